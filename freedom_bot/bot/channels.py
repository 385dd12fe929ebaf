from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.core.config import settings
from freedom_bot.db.dialect import upsert_insert
from freedom_bot.db.models import ChannelSettings

logger = logging.getLogger(__name__)

ChannelType = Literal["verify", "drivers"]

_CHANNEL_COLUMNS: dict[str, str] = {
    "verify": "verify_channel_id",
    "drivers": "drivers_channel_id",
}


@dataclass(frozen=True)
class ChannelBinding:
    type: ChannelType
    chat_id: int


# Кэшируются только привязки каналов (конфигурация), а не состояние диалогов.
_BINDING_CACHE: dict[str, tuple[ChannelBinding | None, float]] = {}


def clear_binding_cache() -> None:
    _BINDING_CACHE.clear()


def _read_cache(channel_type: str) -> tuple[bool, ChannelBinding | None]:
    ttl = settings.channel_binding_cache_seconds
    if ttl <= 0:
        return False, None
    entry = _BINDING_CACHE.get(channel_type)
    if entry is None:
        return False, None
    binding, expires_at = entry
    if expires_at <= time.monotonic():
        _BINDING_CACHE.pop(channel_type, None)
        return False, None
    return True, binding


def _write_cache(channel_type: str, binding: ChannelBinding | None) -> None:
    ttl = settings.channel_binding_cache_seconds
    if ttl <= 0:
        return
    _BINDING_CACHE[channel_type] = (binding, time.monotonic() + ttl)


def _fallback_chat_id(channel_type: str) -> int | None:
    if channel_type == "verify":
        return settings.verify_channel_id
    if channel_type == "drivers":
        return settings.drivers_channel_id
    return None


async def save_channel_binding(db: AsyncSession, binding: ChannelBinding) -> None:
    column = _CHANNEL_COLUMNS[binding.type]
    stmt = upsert_insert(db, ChannelSettings).values(id=1, **{column: binding.chat_id})
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={column: getattr(stmt.excluded, column)},
    )
    await db.execute(stmt)
    _write_cache(binding.type, binding)


async def _persist_fallback(db: AsyncSession, channel_type: ChannelType) -> ChannelBinding | None:
    chat_id = _fallback_chat_id(channel_type)
    if chat_id is None:
        return None
    binding = ChannelBinding(type=channel_type, chat_id=chat_id)
    try:
        async with db.begin_nested():
            await save_channel_binding(db, binding)
    except SQLAlchemyError as exc:
        logger.error(
            "channel_binding_fallback_persist_failed",
            extra={"channel_type": channel_type, "error": str(exc)},
        )
    _write_cache(channel_type, binding)
    return binding


async def get_channel_binding(
    db: AsyncSession | None, channel_type: ChannelType
) -> ChannelBinding | None:
    """Возвращает привязку канала или None, если канал не настроен."""
    hit, cached = _read_cache(channel_type)
    if hit:
        return cached

    if db is None:
        chat_id = _fallback_chat_id(channel_type)
        return ChannelBinding(type=channel_type, chat_id=chat_id) if chat_id is not None else None

    row = await db.scalar(select(ChannelSettings).where(ChannelSettings.id == 1))
    value = getattr(row, _CHANNEL_COLUMNS[channel_type]) if row is not None else None
    if value is None:
        fallback = await _persist_fallback(db, channel_type)
        if fallback is None:
            _write_cache(channel_type, None)
        return fallback

    binding = ChannelBinding(type=channel_type, chat_id=int(value))
    _write_cache(channel_type, binding)
    return binding
