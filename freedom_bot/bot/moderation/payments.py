from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.channels import get_channel_binding
from freedom_bot.bot.flows.executor.copy import format_amount, get_role_copy
from freedom_bot.bot.flows.executor.menu import EXECUTOR_SUBSCRIPTION_ACTION
from freedom_bot.bot.flows.executor.state import reset_subscription
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.moderation.queue import PublishResult, notify_applicant, post_moderation_card
from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.store import SessionKey, SessionStore, session_store
from freedom_bot.core.timezone import format_app_datetime, utcnow
from freedom_bot.db.models import (
    PaymentStatus,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
    User,
)

logger = logging.getLogger(__name__)

PAYMENT_REJECTION_REASONS = [
    "Нет подтверждения оплаты",
    "Сумма не совпадает",
    "Недостаточно данных",
]


@dataclass(frozen=True)
class PaymentApplication:
    id: int
    role: ExecutorRole
    telegram_id: int
    chat_id: int
    receipt_message_id: int
    period_label: str
    amount: int
    currency: str
    submitted_at: datetime
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


def build_payment_card(application: PaymentApplication) -> str:
    copy = get_role_copy(application.role)
    lines = [
        "💳 Проверка платежа по подписке",
        "",
        f"ID платежа: {application.id}",
        f"Роль: {copy.noun}",
        f"Telegram ID: {application.telegram_id}",
    ]
    if application.username:
        lines.append(f"Username: @{application.username}")
    full_name = " ".join(part for part in (application.first_name, application.last_name) if part)
    if full_name:
        lines.append(f"Имя: {full_name}")
    if application.phone:
        lines.append(f"Телефон: {application.phone}")
    lines.append(f"Период: {application.period_label}")
    lines.append(f"Сумма: {format_amount(application.amount, application.currency)}")
    lines.append(f"Отправлено: {format_app_datetime(application.submitted_at)}")
    return "\n".join(lines)


async def publish_payment_application(
    bot: Bot,
    db: AsyncSession | None,
    application: PaymentApplication,
) -> PublishResult:
    result = await post_moderation_card(
        bot,
        db,
        kind="payment",
        item_id=application.id,
        text=build_payment_card(application),
        reasons=PAYMENT_REJECTION_REASONS,
    )
    if not result.ok:
        return result
    try:
        await bot.copy_message(
            chat_id=result.chat_id,
            from_chat_id=application.chat_id,
            message_id=application.receipt_message_id,
        )
    except TelegramAPIError as exc:
        logger.warning(
            "payment_receipt_copy_failed",
            extra={"payment_id": application.id, "chat_id": result.chat_id, "error": str(exc)},
        )
    return result


async def create_payment_record(
    db: AsyncSession,
    *,
    telegram_id: int,
    period_id: str,
    days: int,
    amount: int,
    currency: str,
    receipt_file_id: str,
    chat_id: int,
) -> SubscriptionPayment:
    user = await db.scalar(select(User).where(User.telegram_id == telegram_id))
    if user is None:
        raise LookupError(f"user {telegram_id} not found")
    payment = SubscriptionPayment(
        user_id=user.id,
        period_id=period_id,
        days=days,
        amount=amount,
        currency=currency,
        status=PaymentStatus.PENDING,
        receipt_file_id=receipt_file_id,
        applicant_chat_id=chat_id,
    )
    db.add(payment)
    await db.flush()
    return payment


async def activate_subscription(db: AsyncSession, payment: SubscriptionPayment) -> Subscription:
    """Продлевает активную подписку или создаёт новую на оплаченный период."""
    now = utcnow()
    binding = await get_channel_binding(db, "drivers")
    current = await db.scalar(
        select(Subscription)
        .where(
            Subscription.user_id == payment.user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
        )
        .order_by(Subscription.id.desc())
        .limit(1)
        .with_for_update()
    )
    if current is not None:
        current_end = current.next_billing_at
        if current_end is not None and current_end.tzinfo is None:
            current_end = current_end.replace(tzinfo=now.tzinfo)
        start = current_end if current_end is not None and current_end > now else now
        current.next_billing_at = start + timedelta(days=payment.days)
        current.grace_until = None
        subscription = current
    else:
        subscription = Subscription(
            user_id=payment.user_id,
            chat_id=binding.chat_id if binding is not None else None,
            status=SubscriptionStatus.ACTIVE,
            next_billing_at=now + timedelta(days=payment.days),
        )
        db.add(subscription)
    await db.flush()
    return subscription


async def _reset_applicant_session(
    db: AsyncSession, store: SessionStore, payment: SubscriptionPayment
) -> None:
    if payment.applicant_chat_id is None:
        return
    key = SessionKey(scope="chat", scope_id=str(int(payment.applicant_chat_id)))
    document = await store.load(db, key, for_update=True)
    if document is None:
        return
    subscription = document.executor.subscription
    if subscription.pending_payment_id not in (None, payment.id):
        return
    reset_subscription(subscription)
    await store.save(db, key, document)


async def apply_payment_decision(
    bot: Bot,
    db: AsyncSession,
    payment: SubscriptionPayment,
    *,
    approved: bool,
    reason: str | None,
    store: SessionStore | None = None,
) -> None:
    payment.status = PaymentStatus.APPROVED if approved else PaymentStatus.REJECTED
    payment.decided_at = utcnow()
    subscription = await activate_subscription(db, payment) if approved else None
    await db.flush()

    await _reset_applicant_session(db, store or session_store, payment)
    logger.info(
        "payment_decided",
        extra={"payment_id": payment.id, "approved": approved},
    )

    user = await db.get(User, payment.user_id)
    if user is None:
        return
    if approved:
        lines = ["✅ Оплата подтверждена, подписка активна."]
        if subscription is not None and subscription.next_billing_at is not None:
            lines.append(f"Доступ действует до {format_app_datetime(subscription.next_billing_at)}.")
        lines.append("Нажмите кнопку ниже, чтобы получить ссылку на канал.")
        keyboard = build_keyboard(
            [[callback_button("📨 Получить ссылку на канал", EXECUTOR_SUBSCRIPTION_ACTION)]]
        )
        text = "\n".join(lines)
    else:
        text = "\n".join(
            [
                "❌ Оплата подписки отклонена.",
                f"Причина: {reason or 'не указана'}.",
                "Вы можете оформить подписку заново через меню бота.",
            ]
        )
        keyboard = None
    await notify_applicant(bot, db, int(user.telegram_id), text, keyboard)
