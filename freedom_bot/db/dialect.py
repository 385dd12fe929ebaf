from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(session: AsyncSession, table):
    """Возвращает `insert` с поддержкой ON CONFLICT для текущего диалекта."""
    dialect_name = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)
