from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from aiogram import Bot
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.flows.executor.copy import get_role_copy
from freedom_bot.bot.flows.executor.menu import EXECUTOR_SUBSCRIPTION_ACTION
from freedom_bot.bot.flows.executor.state import reset_verification
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.moderation.queue import PublishResult, notify_applicant, post_moderation_card
from freedom_bot.bot.roles import ExecutorRole, normalize_executor_role
from freedom_bot.bot.session.store import SessionKey, SessionStore, session_store
from freedom_bot.core.timezone import format_app_datetime, utcnow
from freedom_bot.db.models import User, Verification, VerificationStatus

logger = logging.getLogger(__name__)

VERIFICATION_REJECTION_REASONS = [
    "Документы нечитабельны",
    "Данные не совпадают",
    "Не подходит",
]


@dataclass(frozen=True)
class VerificationApplication:
    id: int
    role: ExecutorRole
    telegram_id: int
    chat_id: int
    photo_count: int
    submitted_at: datetime
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


def build_verification_card(application: VerificationApplication) -> str:
    copy = get_role_copy(application.role)
    lines = [
        f"🛡️ Заявка на верификацию {copy.genitive}",
        "",
        f"ID заявки: {application.id}",
        f"Telegram ID: {application.telegram_id}",
    ]
    if application.username:
        lines.append(f"Username: @{application.username}")
    full_name = " ".join(
        part.strip() for part in (application.first_name, application.last_name) if part and part.strip()
    )
    if full_name:
        lines.append(f"Имя: {full_name}")
    if application.phone:
        lines.append(f"Телефон: {application.phone}")
    lines.append(f"Фотографии: {application.photo_count}")
    lines.append(f"Отправлено: {format_app_datetime(application.submitted_at)}")
    return "\n".join(lines)


async def publish_verification_application(
    bot: Bot,
    db: AsyncSession | None,
    application: VerificationApplication,
) -> PublishResult:
    return await post_moderation_card(
        bot,
        db,
        kind="verify",
        item_id=application.id,
        text=build_verification_card(application),
        reasons=VERIFICATION_REJECTION_REASONS,
    )


async def create_verification_record(
    db: AsyncSession,
    *,
    telegram_id: int,
    role: ExecutorRole,
    photo_count: int,
    chat_id: int,
) -> Verification:
    user = await db.scalar(select(User).where(User.telegram_id == telegram_id))
    if user is None:
        raise LookupError(f"user {telegram_id} not found")
    record = Verification(
        user_id=user.id,
        role=role.value,
        status=VerificationStatus.PENDING,
        photos_count=photo_count,
        applicant_chat_id=chat_id,
    )
    db.add(record)
    await db.flush()
    return record


async def _reset_applicant_session(
    db: AsyncSession,
    store: SessionStore,
    record: Verification,
    role: ExecutorRole,
) -> None:
    if record.applicant_chat_id is None:
        return
    key = SessionKey(scope="chat", scope_id=str(int(record.applicant_chat_id)))
    document = await store.load(db, key, for_update=True)
    if document is None:
        return
    verification = document.executor.verification[role]
    moderation = verification.moderation
    if moderation is not None and moderation.application_id not in (None, record.id, str(record.id)):
        return
    reset_verification(verification)
    await store.save(db, key, document)


async def apply_verification_decision(
    bot: Bot,
    db: AsyncSession,
    record: Verification,
    *,
    approved: bool,
    reason: str | None,
    store: SessionStore | None = None,
) -> None:
    role = normalize_executor_role(record.role) or ExecutorRole.COURIER
    copy = get_role_copy(role)
    record.status = VerificationStatus.ACTIVE if approved else VerificationStatus.REJECTED
    record.decided_at = utcnow()

    user = await db.get(User, record.user_id)
    if approved and user is not None:
        user.is_verified = True
    await db.flush()

    await _reset_applicant_session(db, store or session_store, record, role)
    logger.info(
        "verification_decided",
        extra={"verification_id": record.id, "approved": approved, "role": role.value},
    )

    if user is None:
        return
    if approved:
        text = "\n".join(
            [
                "✅ Документы подтверждены.",
                f"Чтобы получить доступ к заказам {copy.genitive}, оформите подписку кнопкой ниже.",
                "Если потребуется помощь, напишите в поддержку.",
            ]
        )
        keyboard = build_keyboard(
            [[callback_button("📨 Получить ссылку на канал", EXECUTOR_SUBSCRIPTION_ACTION)]]
        )
    else:
        text = "\n".join(
            [
                "❌ Ваша заявка на верификацию отклонена.",
                f"Причина: {reason or 'не указана'}.",
                "Вы можете отправить новую заявку через меню бота.",
            ]
        )
        keyboard = None
    await notify_applicant(bot, db, int(user.telegram_id), text, keyboard)
