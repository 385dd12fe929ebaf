from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from aiogram import Bot, F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.channels import get_channel_binding
from freedom_bot.bot.flows.executor.copy import (
    PRIVATE_ONLY,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_CHANNEL_MISSING,
    SUBSCRIPTION_INVITE_FAILED,
    SUBSCRIPTION_INVITE_TEXT,
    SUBSCRIPTION_PENDING,
    SUBSCRIPTION_PERIOD_PROMPT,
    SUBSCRIPTION_PERIOD_UNKNOWN,
    SUBSCRIPTION_RECEIPT_SENT,
    SUBSCRIPTION_VERIFICATION_REQUIRED,
    TRY_AGAIN_LATER,
    VERIFICATION_ROLE_REQUIRED,
    build_payment_instructions,
    format_amount,
    get_role_copy,
)
from freedom_bot.bot.flows.executor.menu import (
    EXECUTOR_SUBSCRIPTION_ACTION,
    EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION,
    show_executor_menu,
)
from freedom_bot.bot.flows.executor.state import (
    begin_period_selection,
    can_start_subscription,
    mark_receipt_submitted,
    record_invite,
    reset_subscription,
    select_period,
)
from freedom_bot.bot.idempotency import with_idempotency
from freedom_bot.bot.keyboards import build_keyboard, callback_button, url_button
from freedom_bot.bot.moderation.payments import (
    PaymentApplication,
    create_payment_record,
    publish_payment_application,
)
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.session.middleware import STORE_ERRORS
from freedom_bot.bot.telegram import with_telegram_retries
from freedom_bot.bot.ui import remember_ephemeral, step_tracker
from freedom_bot.core.config import settings
from freedom_bot.core.errors import PaymentSubmissionError
from freedom_bot.core.timezone import utcnow

logger = logging.getLogger(__name__)

SUBSCRIPTION_STEP_ID = "executor:subscription"
PERIOD_PREFIX = "sub:period:"
CANCEL_ACTION = "sub:cancel"
# Схлопываем двойные нажатия, а не повторные запросы через минуту.
LINK_TAP_TTL_SECONDS = 5

router = Router()


def build_period_keyboard() -> InlineKeyboardMarkup:
    rows = [
        [
            callback_button(
                f"{period.label} — {format_amount(period.amount, period.currency)}",
                f"{PERIOD_PREFIX}{period.id}",
            )
        ]
        for period in settings.subscription_periods
    ]
    rows.append([callback_button("✖️ Отменить", CANCEL_ACTION)])
    return build_keyboard(rows)


async def _reply(bot: Bot, chat_id: int, session: SessionDocument, text: str) -> None:
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=chat_id, text=text),
        operation_name="subscription_reply",
    )
    remember_ephemeral(session, message.message_id)


async def _guarded(
    db: AsyncSession | None,
    actor_id: int,
    action: str,
    handler: Callable[[], Awaitable[Any]],
    *,
    payload: str | None = None,
    ttl_seconds: int | None = None,
) -> None:
    # Без базы маркер некуда записать, действие выполняется как есть.
    if db is None:
        await handler()
        return
    await with_idempotency(actor_id, action, handler, payload=payload, ttl_seconds=ttl_seconds)


async def _issue_invite(
    bot: Bot,
    db: AsyncSession | None,
    chat_id: int,
    session: SessionDocument,
    *,
    force_new: bool,
) -> None:
    state = session.executor
    subscription = state.subscription
    copy = get_role_copy(state.role)

    invite_link = subscription.last_invite_link
    if invite_link is None or force_new:
        binding = await get_channel_binding(db, "drivers")
        if binding is None:
            text = SUBSCRIPTION_CHANNEL_MISSING.format(plural_genitive=copy.plural_genitive)
            await _reply(bot, chat_id, session, text)
            return
        try:
            invite = await with_telegram_retries(
                lambda: bot.create_chat_invite_link(
                    chat_id=binding.chat_id,
                    name=f"executor-{chat_id}",
                    creates_join_request=True,
                ),
                operation_name="subscription_invite",
            )
        except TelegramAPIError as exc:
            logger.error(
                "subscription_invite_failed",
                extra={"chat_id": chat_id, "channel_id": binding.chat_id, "error": str(exc)},
            )
            await _reply(bot, chat_id, session, SUBSCRIPTION_INVITE_FAILED)
            return
        invite_link = invite.invite_link
        record_invite(subscription, invite_link, utcnow())
        logger.info("subscription_invite_issued", extra={"chat_id": chat_id, "force_new": force_new})

    await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=SUBSCRIPTION_STEP_ID,
        text=SUBSCRIPTION_INVITE_TEXT.format(plural_genitive=copy.plural_genitive),
        keyboard=build_keyboard(
            [
                [url_button("🚪 Вступить в канал", invite_link)],
                [callback_button("🔁 Новая ссылка", EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION)],
            ]
        ),
    )


async def start_executor_subscription(
    bot: Bot,
    db: AsyncSession | None,
    chat_id: int,
    session: SessionDocument,
    auth: AuthState | None,
    *,
    force_new: bool = False,
) -> None:
    state = session.executor
    role = state.role
    if role is None:
        await _reply(bot, chat_id, session, VERIFICATION_ROLE_REQUIRED)
        return

    verified = auth is not None and auth.executor.is_role_verified(role)
    if not can_start_subscription(state.verification[role], verified=verified):
        logger.info(
            "subscription_verification_required", extra={"chat_id": chat_id, "role": role.value}
        )
        await _reply(bot, chat_id, session, SUBSCRIPTION_VERIFICATION_REQUIRED)
        return

    subscription = state.subscription
    if subscription.status == "pending_moderation":
        await _reply(bot, chat_id, session, SUBSCRIPTION_PENDING)
        return

    if auth is not None and auth.executor.has_active_subscription:
        await _issue_invite(bot, db, chat_id, session, force_new=force_new)
        return

    begin_period_selection(subscription)
    await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=SUBSCRIPTION_STEP_ID,
        text=SUBSCRIPTION_PERIOD_PROMPT,
        keyboard=build_period_keyboard(),
    )


async def select_subscription_period(
    bot: Bot,
    chat_id: int,
    session: SessionDocument,
    period_id: str,
) -> bool:
    subscription = session.executor.subscription
    if subscription.status not in ("selecting_period", "awaiting_receipt"):
        return False
    period = settings.find_subscription_period(period_id)
    if period is None:
        return False
    select_period(subscription, period.id)
    details = settings.payment_details
    await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=SUBSCRIPTION_STEP_ID,
        text=build_payment_instructions(
            period.label,
            period.amount,
            period.currency,
            card=details.card,
            name=details.name,
            phone=details.phone,
        ),
        keyboard=build_keyboard([[callback_button("✖️ Отменить", CANCEL_ACTION)]]),
    )
    return True


async def submit_subscription_receipt(
    bot: Bot,
    db: AsyncSession | None,
    message: Message,
    session: SessionDocument,
) -> bool:
    chat_id = message.chat.id
    subscription = session.executor.subscription
    period = settings.find_subscription_period(subscription.selected_period_id)
    if period is None:
        begin_period_selection(subscription)
        await _reply(bot, chat_id, session, SUBSCRIPTION_PERIOD_UNKNOWN)
        return False
    if db is None or message.from_user is None:
        await _reply(bot, chat_id, session, TRY_AGAIN_LATER)
        return False

    if message.photo:
        receipt_file_id = message.photo[-1].file_id
    else:
        receipt_file_id = message.document.file_id
    role = session.executor.role
    copy = get_role_copy(role)
    try:
        async with db.begin_nested():
            payment = await create_payment_record(
                db,
                telegram_id=message.from_user.id,
                period_id=period.id,
                days=period.days,
                amount=period.amount,
                currency=period.currency,
                receipt_file_id=receipt_file_id,
                chat_id=chat_id,
            )
            result = await publish_payment_application(
                bot,
                db,
                PaymentApplication(
                    id=payment.id,
                    role=role,
                    telegram_id=message.from_user.id,
                    chat_id=chat_id,
                    receipt_message_id=message.message_id,
                    period_label=period.label,
                    amount=period.amount,
                    currency=period.currency,
                    submitted_at=utcnow(),
                    username=message.from_user.username,
                    first_name=message.from_user.first_name,
                    last_name=message.from_user.last_name,
                    phone=session.phone_number,
                ),
            )
            if not result.ok:
                raise PaymentSubmissionError(result.status)
            payment.moderation_token = result.token
            payment.moderation_chat_id = result.chat_id
            payment.moderation_message_id = result.message_id
    except PaymentSubmissionError as exc:
        logger.warning(
            "subscription_receipt_rejected", extra={"chat_id": chat_id, "reason": exc.reason}
        )
        text = SUBSCRIPTION_CHANNEL_MISSING.format(plural_genitive=copy.plural_genitive)
        await _reply(bot, chat_id, session, text)
        return False
    except (LookupError, TelegramAPIError, *STORE_ERRORS) as exc:
        logger.error("subscription_receipt_failed", extra={"chat_id": chat_id, "error": str(exc)})
        await _reply(bot, chat_id, session, TRY_AGAIN_LATER)
        return False

    mark_receipt_submitted(
        subscription,
        payment_id=payment.id,
        moderation_chat_id=result.chat_id,
        moderation_message_id=result.message_id,
    )
    logger.info(
        "subscription_receipt_submitted",
        extra={"chat_id": chat_id, "payment_id": payment.id, "period_id": period.id},
    )
    return True


def cancel_subscription_request(session: SessionDocument) -> bool:
    subscription = session.executor.subscription
    if subscription.status == "pending_moderation":
        return False
    reset_subscription(subscription)
    return True


def awaiting_subscription_receipt(message: Message, session: SessionDocument | None = None) -> bool:
    if session is None or message.chat.type != "private":
        return False
    return session.executor.subscription.status == "awaiting_receipt"


async def _private_callback(callback: CallbackQuery) -> Message | None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return None
    return message


@router.callback_query(F.data.in_({EXECUTOR_SUBSCRIPTION_ACTION, EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION}))
async def handle_subscription_link(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    await callback.answer()
    force_new = callback.data == EXECUTOR_SUBSCRIPTION_NEW_LINK_ACTION

    async def _run() -> None:
        await start_executor_subscription(
            callback.bot, db, message.chat.id, session, auth, force_new=force_new
        )

    await _guarded(db, callback.from_user.id, callback.data, _run, ttl_seconds=LINK_TAP_TTL_SECONDS)


@router.callback_query(F.data.startswith(PERIOD_PREFIX))
async def handle_period_pick(callback: CallbackQuery, session: SessionDocument) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    period_id = callback.data[len(PERIOD_PREFIX) :]
    selected = await select_subscription_period(callback.bot, message.chat.id, session, period_id)
    if not selected:
        await callback.answer(SUBSCRIPTION_PERIOD_UNKNOWN, show_alert=True)
        return
    await callback.answer()


@router.callback_query(F.data == CANCEL_ACTION)
async def handle_subscription_cancel(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    if not cancel_subscription_request(session):
        await callback.answer(SUBSCRIPTION_PENDING, show_alert=True)
        return
    await callback.answer(SUBSCRIPTION_CANCELLED)
    await step_tracker.clear(callback.bot, session, SUBSCRIPTION_STEP_ID, cleanup_only=False)
    await show_executor_menu(callback.bot, message.chat.id, session, auth)


@router.message(F.photo | F.document, awaiting_subscription_receipt)
async def handle_subscription_receipt(
    message: Message,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    submitted = False

    async def _run() -> None:
        nonlocal submitted
        submitted = await submit_subscription_receipt(message.bot, db, message, session)

    actor_id = message.from_user.id if message.from_user else message.chat.id
    await _guarded(db, actor_id, "subscription:receipt", _run, payload=str(message.message_id))
    if not submitted:
        return
    await step_tracker.clear(message.bot, session, SUBSCRIPTION_STEP_ID, cleanup_only=False)
    await message.answer(SUBSCRIPTION_RECEIPT_SENT)
    await show_executor_menu(message.bot, message.chat.id, session, auth)
