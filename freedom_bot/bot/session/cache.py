from __future__ import annotations

import json
import logging

from redis.asyncio import Redis

from freedom_bot.bot.session.document import SessionDocument, load_document
from freedom_bot.bot.session.store import SessionKey
from freedom_bot.core.config import settings

logger = logging.getLogger(__name__)


class SessionCache:
    """Резервная копия документов сессий в Redis.

    Используется только когда Postgres недоступен. Любые ошибки Redis
    логируются и не прерывают обработку апдейта.
    """

    def __init__(
        self,
        client: Redis | None = None,
        *,
        prefix: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._client = client
        self._prefix = prefix if prefix is not None else settings.session_cache_prefix
        self._ttl_seconds = ttl_seconds or settings.session_cache_ttl_seconds

    @classmethod
    def from_settings(cls) -> "SessionCache":
        if not settings.redis_url:
            return cls(client=None)
        return cls(client=Redis.from_url(settings.redis_url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _key(self, key: SessionKey) -> str:
        return f"{self._prefix}{key}"

    async def load(self, key: SessionKey) -> SessionDocument | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(self._key(key))
        except Exception as exc:
            logger.warning("session_cache_load_failed", extra={"scope": str(key), "error": str(exc)})
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("session_cache_payload_invalid", extra={"scope": str(key), "error": str(exc)})
            return None
        return load_document(payload)

    async def save(self, key: SessionKey, document: SessionDocument) -> None:
        if self._client is None:
            return
        try:
            await self._client.set(
                self._key(key), document.model_dump_json(), ex=self._ttl_seconds
            )
        except Exception as exc:
            logger.warning("session_cache_save_failed", extra={"scope": str(key), "error": str(exc)})

    async def delete(self, key: SessionKey) -> None:
        if self._client is None:
            return
        try:
            await self._client.delete(self._key(key))
        except Exception as exc:
            logger.warning("session_cache_delete_failed", extra={"scope": str(key), "error": str(exc)})
