from __future__ import annotations

import logging
import secrets
from functools import lru_cache

from aiogram import Bot, Dispatcher
from aiogram.types import Update
from fastapi import APIRouter, HTTPException, Request, status

from freedom_bot.bot.router import setup_bot
from freedom_bot.core.config import settings

router = APIRouter(tags=["telegram"])
logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@lru_cache(maxsize=1)
def get_bot() -> Bot:
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is not configured.")
    return Bot(token=settings.bot_token)


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    dispatcher = Dispatcher()
    setup_bot(dispatcher)
    return dispatcher


def _secret_matches(received: str | None) -> bool:
    expected = settings.webhook_secret
    if not expected:
        return True
    if received is None:
        return False
    return secrets.compare_digest(received, expected)


@router.post(settings.webhook_path)
async def telegram_webhook(request: Request) -> dict[str, bool]:
    if not _secret_matches(request.headers.get(SECRET_HEADER)):
        logger.warning(
            "telegram_webhook_secret_mismatch",
            extra={"client": getattr(request.client, "host", None)},
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="invalid secret token")

    payload = await request.json()
    update = Update.model_validate(payload, context={"bot": get_bot()})
    try:
        await get_dispatcher().feed_update(get_bot(), update)
    except Exception as exc:
        # Telegram повторяет апдейт при 5xx, поэтому ошибку хэндлера только логируем.
        logger.exception(
            "telegram_update_failed",
            extra={"update_id": update.update_id, "error": str(exc)},
        )
    return {"ok": True}
