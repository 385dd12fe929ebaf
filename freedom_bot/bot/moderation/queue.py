from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Literal

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramForbiddenError
from aiogram.types import InlineKeyboardMarkup
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import mark_user_blocked
from freedom_bot.bot.channels import get_channel_binding
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.telegram import with_telegram_retries

logger = logging.getLogger(__name__)

ModerationKind = Literal["verify", "payment"]
CALLBACK_PREFIX = "mod"
APPROVE = "approve"
REJECT_PREFIX = "reject"


@dataclass(frozen=True)
class PublishResult:
    status: Literal["success", "missing_channel"]
    chat_id: int | None = None
    message_id: int | None = None
    token: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class ModerationCallback:
    kind: ModerationKind
    item_id: int
    token: str
    approved: bool
    reason_index: int | None = None


def create_token() -> str:
    return secrets.token_hex(8)


def build_callback_data(kind: ModerationKind, item_id: int, token: str, decision: str) -> str:
    return f"{CALLBACK_PREFIX}:{kind}:{item_id}:{token}:{decision}"


def parse_callback_data(data: str | None) -> ModerationCallback | None:
    if not data:
        return None
    parts = data.split(":")
    if len(parts) != 5 or parts[0] != CALLBACK_PREFIX or parts[1] not in ("verify", "payment"):
        return None
    _, kind, raw_id, token, decision = parts
    try:
        item_id = int(raw_id)
    except ValueError:
        return None
    if decision == APPROVE:
        return ModerationCallback(kind=kind, item_id=item_id, token=token, approved=True)
    if decision.startswith(REJECT_PREFIX):
        raw_index = decision[len(REJECT_PREFIX) :].lstrip("-")
        reason_index = int(raw_index) if raw_index.isdigit() else None
        return ModerationCallback(
            kind=kind, item_id=item_id, token=token, approved=False, reason_index=reason_index
        )
    return None


def build_decision_keyboard(
    kind: ModerationKind, item_id: int, token: str, reasons: list[str]
) -> InlineKeyboardMarkup:
    rows = [[callback_button("✅ Одобрить", build_callback_data(kind, item_id, token, APPROVE))]]
    for index, reason in enumerate(reasons):
        rows.append(
            [
                callback_button(
                    f"❌ {reason}",
                    build_callback_data(kind, item_id, token, f"{REJECT_PREFIX}-{index}"),
                )
            ]
        )
    return build_keyboard(rows)


async def post_moderation_card(
    bot: Bot,
    db: AsyncSession | None,
    *,
    kind: ModerationKind,
    item_id: int,
    text: str,
    reasons: list[str],
) -> PublishResult:
    binding = await get_channel_binding(db, "verify")
    if binding is None:
        logger.warning("moderation_channel_missing", extra={"kind": kind, "item_id": item_id})
        return PublishResult(status="missing_channel")

    token = create_token()
    keyboard = build_decision_keyboard(kind, item_id, token, reasons)
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=binding.chat_id, text=text, reply_markup=keyboard),
        operation_name="moderation_publish",
    )
    logger.info(
        "moderation_card_published",
        extra={"kind": kind, "item_id": item_id, "chat_id": binding.chat_id},
    )
    return PublishResult(
        status="success",
        chat_id=binding.chat_id,
        message_id=message.message_id,
        token=token,
    )


def format_moderator(user) -> str:
    if user is None:
        return "неизвестный модератор"
    if user.username:
        return f"@{user.username}"
    full_name = " ".join(part for part in (user.first_name, user.last_name) if part).strip()
    if full_name:
        return f"{full_name} (ID {user.id})"
    return f"ID {user.id}"


def build_decision_suffix(approved: bool, moderator, reason: str | None) -> str:
    label = format_moderator(moderator)
    if approved:
        return f"✅ Одобрено модератором {label}."
    return f"❌ Отклонено модератором {label}. Причина: {reason or 'без указания причины'}."


async def notify_applicant(
    bot: Bot,
    db: AsyncSession,
    telegram_id: int,
    text: str,
    keyboard: InlineKeyboardMarkup | None = None,
) -> bool:
    try:
        await with_telegram_retries(
            lambda: bot.send_message(chat_id=telegram_id, text=text, reply_markup=keyboard),
            operation_name="moderation_notify",
        )
    except TelegramForbiddenError:
        logger.info("applicant_blocked_bot", extra={"user_id": telegram_id})
        await mark_user_blocked(db, telegram_id)
        return False
    except TelegramAPIError as exc:
        logger.error("applicant_notify_failed", extra={"user_id": telegram_id, "error": str(exc)})
        return False
    return True
