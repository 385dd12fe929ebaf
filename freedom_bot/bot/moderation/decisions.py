from __future__ import annotations

import logging

from aiogram import F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.moderation.payments import PAYMENT_REJECTION_REASONS, apply_payment_decision
from freedom_bot.bot.moderation.queue import (
    CALLBACK_PREFIX,
    ModerationCallback,
    build_decision_suffix,
    parse_callback_data,
)
from freedom_bot.bot.moderation.verification import (
    VERIFICATION_REJECTION_REASONS,
    apply_verification_decision,
)
from freedom_bot.db.models import (
    PaymentStatus,
    SubscriptionPayment,
    Verification,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

router = Router()


def _reason(callback_data: ModerationCallback, reasons: list[str]) -> str | None:
    index = callback_data.reason_index
    if index is None or index < 0 or index >= len(reasons):
        return None
    return reasons[index]


async def _load_item(db: AsyncSession, callback_data: ModerationCallback):
    model = Verification if callback_data.kind == "verify" else SubscriptionPayment
    return await db.scalar(
        select(model).where(model.id == callback_data.item_id).with_for_update()
    )


def _is_pending(item) -> bool:
    if isinstance(item, Verification):
        return item.status == VerificationStatus.PENDING
    return item.status == PaymentStatus.PENDING


@router.callback_query(F.data.startswith(f"{CALLBACK_PREFIX}:"))
async def handle_moderation_decision(
    callback: CallbackQuery,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    if auth is None or not auth.is_moderator or auth.stale:
        await callback.answer("Недостаточно прав для модерации.", show_alert=True)
        return
    if db is None:
        await callback.answer("Сервис временно недоступен. Попробуйте позже.", show_alert=True)
        return

    callback_data = parse_callback_data(callback.data)
    if callback_data is None:
        await callback.answer("Некорректная кнопка.", show_alert=True)
        return

    item = await _load_item(db, callback_data)
    if item is None:
        await callback.answer("Заявка не найдена.", show_alert=True)
        return
    if item.moderation_token != callback_data.token:
        await callback.answer("Кнопка устарела.", show_alert=True)
        return
    if not _is_pending(item):
        await callback.answer("Заявка уже обработана.", show_alert=True)
        return

    if callback_data.kind == "verify":
        reason = _reason(callback_data, VERIFICATION_REJECTION_REASONS)
        await apply_verification_decision(
            callback.bot, db, item, approved=callback_data.approved, reason=reason
        )
    else:
        reason = _reason(callback_data, PAYMENT_REJECTION_REASONS)
        await apply_payment_decision(
            callback.bot, db, item, approved=callback_data.approved, reason=reason
        )

    await callback.answer("Решение сохранено.")
    message = callback.message
    if message is None or not getattr(message, "text", None):
        return
    suffix = build_decision_suffix(callback_data.approved, callback.from_user, reason)
    try:
        await message.edit_text(f"{message.text}\n\n{suffix}", reply_markup=None)
    except TelegramAPIError as exc:
        logger.info(
            "moderation_card_update_failed",
            extra={"kind": callback_data.kind, "item_id": callback_data.item_id, "error": str(exc)},
        )
