from __future__ import annotations

import logging
from typing import Any

import httpx

from freedom_bot.core.config import settings
from freedom_bot.core.timezone import utcnow

logger = logging.getLogger(__name__)

SERVICE_NAME = "freedom_bot"


def build_monitoring_event(event: str, payload: dict[str, Any], scope: str | None = None) -> dict[str, Any]:
    return {
        "service": SERVICE_NAME,
        "env": settings.env,
        "event": event,
        "scope": scope,
        "occurred_at": utcnow().isoformat(),
        "payload": payload,
    }


async def send_monitoring_event(event: str, payload: dict[str, Any], *, scope: str | None = None) -> None:
    """Шлёт событие во внешний вебхук мониторинга. Ошибки доставки только логируются."""
    webhook_url = settings.monitoring_webhook_url
    if not webhook_url:
        return
    data = build_monitoring_event(event, payload, scope)
    try:
        async with httpx.AsyncClient(timeout=settings.monitoring_timeout_seconds) as client:
            response = await client.post(webhook_url, json=data)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "monitoring_webhook_failed",
            extra={"event": event, "scope": scope, "error": str(exc)},
        )
