from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy.exc import SQLAlchemyError

from freedom_bot.bot.session.cache import SessionCache
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.session.store import SessionKey, SessionStore, resolve_session_key, session_store
from freedom_bot.core.errors import SessionStoreUnavailable
from freedom_bot.core.monitoring import send_monitoring_event

logger = logging.getLogger(__name__)

STORE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

Handler = Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]]


@dataclass
class SessionControl:
    clear_requested: bool = False

    def clear(self) -> None:
        """Удалить документ сессии после обработки текущего апдейта."""
        self.clear_requested = True


class SessionMiddleware(BaseMiddleware):
    """Оборачивает апдейт в транзакцию и отдаёт хэндлерам документ сессии.

    Строка сессии создаётся заранее (если её ещё нет) и блокируется через
    SELECT ... FOR UPDATE, поэтому апдейты одного чата обрабатываются строго
    по очереди, включая самый первый апдейт чата. Если хранилище недоступно
    до запуска хэндлера, апдейт обрабатывается в деградированном режиме
    с копией из Redis (или пустым документом).
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        cache: SessionCache | None = None,
    ) -> None:
        self._store = store or session_store
        self._cache = cache or SessionCache(client=None)

    async def __call__(
        self,
        handler: Handler,
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        key = resolve_session_key(data.get("event_chat"), data.get("event_from_user"))
        if key is None:
            return await handler(event, data)

        db = None
        try:
            db = await self._store.open()
            document = await self._store.load(db, key, for_update=True)
        except STORE_ERRORS as exc:
            if db is not None:
                await self._store.rollback(db)
                await self._store.close(db)
            return await self._run_degraded(
                handler, event, data, key, SessionStoreUnavailable(str(key), exc)
            )

        if document is None:
            document = SessionDocument.default()
        control = SessionControl()
        data["session"] = document
        data["session_control"] = control
        data["session_key"] = key
        data["session_degraded"] = False
        data["db"] = db

        try:
            result = await handler(event, data)
            if control.clear_requested:
                await self._store.delete(db, key)
            else:
                await self._store.save(db, key, document)
            await self._store.commit(db)
        except Exception:
            await self._store.rollback(db)
            raise
        finally:
            await self._store.close(db)

        if control.clear_requested:
            await self._cache.delete(key)
        else:
            await self._cache.save(key, document)
        return result

    async def _run_degraded(
        self,
        handler: Handler,
        event: TelegramObject,
        data: dict[str, Any],
        key: SessionKey,
        error: SessionStoreUnavailable,
    ) -> Any:
        logger.warning(
            "session_store_unavailable",
            extra={"scope": str(key), "error": str(error.cause)},
        )
        document = await self._cache.load(key) or SessionDocument.default()
        document.is_authenticated = False
        if document.auth_snapshot is not None:
            document.auth_snapshot.stale = True

        await send_monitoring_event(
            "session_store_unavailable",
            {"error": str(error.cause), "error_type": type(error.cause).__name__},
            scope=str(key),
        )

        control = SessionControl()
        data["session"] = document
        data["session_control"] = control
        data["session_key"] = key
        data["session_degraded"] = True
        data["db"] = None

        result = await handler(event, data)
        if control.clear_requested:
            await self._cache.delete(key)
        else:
            await self._cache.save(key, document)
        return result
