from __future__ import annotations

import hashlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Literal, TypeVar

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freedom_bot.core.config import settings
from freedom_bot.core.timezone import utcnow
from freedom_bot.db.dialect import upsert_insert
from freedom_bot.db.models import RecentAction
from freedom_bot.db.session import get_session_factory

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class IdempotencyResult(Generic[T]):
    status: Literal["ok", "duplicate"]
    result: T | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.status == "duplicate"


def build_action_key(actor_id: int, action: str, payload: str | None = None) -> str:
    raw = f"{actor_id}:{action}:{payload or ''}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class IdempotencyGuard:
    """Схлопывает повторные нажатия и повторную доставку одного и того же действия.

    Маркеры пишутся отдельной короткой транзакцией, а не транзакцией апдейта:
    параллельный апдейт должен увидеть маркер сразу после вставки.
    """

    def __init__(
        self, session_factory: Callable[[], async_sessionmaker[AsyncSession]] | None = None
    ) -> None:
        self._session_factory_provider = session_factory or get_session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        db = self._session_factory_provider()()
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()

    async def _purge_expired(self, actor_id: int) -> None:
        try:
            async with self._session() as db:
                await db.execute(
                    delete(RecentAction).where(
                        RecentAction.user_id == actor_id,
                        RecentAction.expires_at < utcnow(),
                    )
                )
        except Exception as exc:
            logger.info("idempotency_purge_failed", extra={"user_id": actor_id, "error": str(exc)})

    async def _acquire(self, actor_id: int, key: str, ttl_seconds: int) -> bool:
        async with self._session() as db:
            stmt = (
                upsert_insert(db, RecentAction)
                .values(
                    user_id=actor_id,
                    key=key,
                    expires_at=utcnow() + timedelta(seconds=ttl_seconds),
                )
                .on_conflict_do_nothing(index_elements=["user_id", "key"])
            )
            result = await db.execute(stmt)
            return bool(result.rowcount)

    async def _release(self, actor_id: int, key: str) -> None:
        try:
            async with self._session() as db:
                await db.execute(
                    delete(RecentAction).where(
                        RecentAction.user_id == actor_id,
                        RecentAction.key == key,
                    )
                )
        except Exception as exc:
            logger.warning(
                "idempotency_release_failed",
                extra={"user_id": actor_id, "key": key, "error": str(exc)},
            )

    async def run(
        self,
        actor_id: int | None,
        action: str,
        handler: Callable[[], Awaitable[T]],
        *,
        payload: str | None = None,
        ttl_seconds: int | None = None,
    ) -> IdempotencyResult[T]:
        if actor_id is None:
            return IdempotencyResult(status="duplicate")
        ttl = ttl_seconds if ttl_seconds is not None else settings.idempotency_ttl_seconds
        key = build_action_key(actor_id, action, payload)

        await self._purge_expired(actor_id)
        if not await self._acquire(actor_id, key, ttl):
            logger.info(
                "idempotency_duplicate",
                extra={"user_id": actor_id, "action": action},
            )
            return IdempotencyResult(status="duplicate")

        try:
            result = await handler()
        except Exception:
            await self._release(actor_id, key)
            raise
        return IdempotencyResult(status="ok", result=result)


idempotency_guard = IdempotencyGuard()


async def with_idempotency(
    actor_id: int | None,
    action: str,
    handler: Callable[[], Awaitable[Any]],
    *,
    payload: str | None = None,
    ttl_seconds: int | None = None,
) -> IdempotencyResult[Any]:
    return await idempotency_guard.run(
        actor_id, action, handler, payload=payload, ttl_seconds=ttl_seconds
    )
