from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from freedom_bot.bot.session.document import SessionDocument, dump_document, load_document
from freedom_bot.core.timezone import utcnow
from freedom_bot.db.dialect import upsert_insert
from freedom_bot.db.models import SessionRecord
from freedom_bot.db.session import get_session_factory

logger = logging.getLogger(__name__)

SessionScope = Literal["chat", "user"]


@dataclass(frozen=True)
class SessionKey:
    scope: SessionScope
    scope_id: str

    def __str__(self) -> str:
        return f"{self.scope}:{self.scope_id}"


def _normalize_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return str(int(value))
    except (TypeError, ValueError):
        return None


def resolve_session_key(chat: Any = None, user: Any = None) -> SessionKey | None:
    chat_id = _normalize_id(getattr(chat, "id", None))
    if chat_id is not None:
        return SessionKey(scope="chat", scope_id=chat_id)
    user_id = _normalize_id(getattr(user, "id", None))
    if user_id is not None:
        return SessionKey(scope="user", scope_id=user_id)
    return None


class SessionStore:
    """Хранит документы сессий в таблице `sessions` (по строке на scope)."""

    def __init__(
        self, session_factory: Callable[[], async_sessionmaker[AsyncSession]] | None = None
    ) -> None:
        self._session_factory_provider = session_factory or get_session_factory
        self._logger = logging.getLogger(__name__)

    async def open(self) -> AsyncSession:
        factory = self._session_factory_provider()
        db = factory()
        await db.begin()
        return db

    async def _ensure_row(self, db: AsyncSession, key: SessionKey) -> None:
        # FOR UPDATE не блокирует отсутствующую строку: сначала создаём её.
        stmt = upsert_insert(db, SessionRecord).values(
            scope=key.scope,
            scope_id=key.scope_id,
            state=dump_document(SessionDocument.default()),
            updated_at=utcnow(),
        )
        await db.execute(stmt.on_conflict_do_nothing(index_elements=["scope", "scope_id"]))

    async def load(
        self, db: AsyncSession, key: SessionKey, *, for_update: bool = False
    ) -> SessionDocument | None:
        stmt = select(SessionRecord.state).where(
            SessionRecord.scope == key.scope,
            SessionRecord.scope_id == key.scope_id,
        )
        if for_update:
            await self._ensure_row(db, key)
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return load_document(row.state)

    async def save(self, db: AsyncSession, key: SessionKey, document: SessionDocument) -> None:
        payload = dump_document(document)
        stmt = upsert_insert(db, SessionRecord).values(
            scope=key.scope,
            scope_id=key.scope_id,
            state=payload,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["scope", "scope_id"],
            set_={"state": stmt.excluded.state, "updated_at": stmt.excluded.updated_at},
        )
        await db.execute(stmt)

    async def delete(self, db: AsyncSession, key: SessionKey) -> None:
        await db.execute(
            delete(SessionRecord).where(
                SessionRecord.scope == key.scope,
                SessionRecord.scope_id == key.scope_id,
            )
        )

    async def commit(self, db: AsyncSession) -> None:
        await db.commit()

    async def rollback(self, db: AsyncSession) -> None:
        try:
            await db.rollback()
        except Exception as exc:
            self._logger.error("session_rollback_failed", extra={"error": str(exc)})

    async def close(self, db: AsyncSession) -> None:
        try:
            await db.close()
        except Exception as exc:
            self._logger.warning("session_close_failed", extra={"error": str(exc)})


session_store = SessionStore()
