from __future__ import annotations

import logging
from typing import Any

from aiogram import Bot, F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.flows.executor.copy import (
    PRIVATE_ONLY,
    VERIFICATION_ALREADY_APPROVED,
    VERIFICATION_ALREADY_SUBMITTED,
    VERIFICATION_CHANNEL_MISSING,
    VERIFICATION_DUPLICATE,
    VERIFICATION_PROGRESS,
    VERIFICATION_PROMPT,
    VERIFICATION_REMINDER,
    VERIFICATION_ROLE_REQUIRED,
    VERIFICATION_SUBMIT_FAILED,
    VERIFICATION_SUBMITTED,
)
from freedom_bot.bot.flows.executor.menu import (
    EXECUTOR_SUBSCRIPTION_ACTION,
    EXECUTOR_VERIFICATION_ACTION,
    show_executor_menu,
)
from freedom_bot.bot.flows.executor.state import (
    PhotoDecision,
    add_uploaded_photo,
    mark_submitted,
    start_collecting,
)
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.moderation.verification import (
    VerificationApplication,
    create_verification_record,
    publish_verification_application,
)
from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.document import (
    ModerationRef,
    SessionDocument,
    UploadedPhoto,
    VerificationRoleState,
)
from freedom_bot.bot.session.middleware import STORE_ERRORS
from freedom_bot.bot.telegram import with_telegram_retries
from freedom_bot.bot.ui import remember_ephemeral, step_tracker
from freedom_bot.core.errors import VerificationSubmissionError
from freedom_bot.core.timezone import utcnow

logger = logging.getLogger(__name__)

VERIFICATION_STEP_ID = "executor:verification"

router = Router()


def _is_verified(session: SessionDocument, auth: AuthState | None) -> bool:
    return auth is not None and auth.executor.is_role_verified(session.executor.role)


def _progress_text(verification: VerificationRoleState) -> str:
    return VERIFICATION_PROGRESS.format(
        uploaded=len(verification.uploaded_photos),
        required=verification.required_photos,
    )


async def _reply(
    bot: Bot, chat_id: int, session: SessionDocument, text: str, *, ephemeral: bool = True
) -> None:
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=chat_id, text=text),
        operation_name="verification_reply",
    )
    if ephemeral:
        remember_ephemeral(session, message.message_id)


async def show_already_approved(bot: Bot, chat_id: int, session: SessionDocument) -> None:
    await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=VERIFICATION_STEP_ID,
        text=VERIFICATION_ALREADY_APPROVED,
        keyboard=build_keyboard(
            [[callback_button("📨 Получить ссылку на канал", EXECUTOR_SUBSCRIPTION_ACTION)]]
        ),
    )


async def start_executor_verification(
    bot: Bot,
    chat_id: int,
    session: SessionDocument,
    auth: AuthState | None,
) -> None:
    """Открывает сбор документов. Подтверждённую проверку повторно не открывает."""
    role = session.executor.role
    if role is None:
        await _reply(bot, chat_id, session, VERIFICATION_ROLE_REQUIRED)
        return
    if _is_verified(session, auth):
        await show_already_approved(bot, chat_id, session)
        return

    verification = session.executor.verification[role]
    if not start_collecting(verification):
        await _reply(bot, chat_id, session, VERIFICATION_ALREADY_SUBMITTED)
        await show_executor_menu(bot, chat_id, session, auth)
        return

    logger.info("verification_collecting_started", extra={"chat_id": chat_id, "role": role.value})
    await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=VERIFICATION_STEP_ID,
        text=f"{VERIFICATION_PROMPT}\n\n{_progress_text(verification)}",
    )
    await show_executor_menu(bot, chat_id, session, auth)


async def _forward_photos(
    bot: Bot,
    *,
    target_chat_id: int,
    source_chat_id: int,
    photos: list[UploadedPhoto],
) -> list[int]:
    forwarded: list[int] = []
    for photo in photos:
        try:
            await with_telegram_retries(
                lambda photo=photo: bot.copy_message(
                    chat_id=target_chat_id,
                    from_chat_id=source_chat_id,
                    message_id=photo.message_id,
                ),
                operation_name="verification_photo_forward",
            )
        except TelegramAPIError as exc:
            logger.warning(
                "verification_photo_forward_failed",
                extra={
                    "chat_id": target_chat_id,
                    "message_id": photo.message_id,
                    "error": str(exc),
                },
            )
            continue
        forwarded.append(photo.message_id)
    return forwarded


async def submit_verification(
    bot: Bot,
    db: AsyncSession | None,
    *,
    chat_id: int,
    from_user: Any,
    session: SessionDocument,
    role: ExecutorRole,
) -> bool:
    """Передаёт собранные фото модераторам.

    При любой ошибке состояние сессии не меняется, чтобы пользователь мог
    повторить отправку с того же места.
    """
    verification = session.executor.verification[role]
    photos = list(verification.uploaded_photos)
    if db is None or from_user is None:
        logger.error(
            "verification_submit_unavailable",
            extra={"chat_id": chat_id, "role": role.value, "has_db": db is not None},
        )
        await _reply(bot, chat_id, session, VERIFICATION_SUBMIT_FAILED)
        return False

    submitted_at = utcnow()
    try:
        async with db.begin_nested():
            record = await create_verification_record(
                db,
                telegram_id=int(from_user.id),
                role=role,
                photo_count=len(photos),
                chat_id=chat_id,
            )
            application = VerificationApplication(
                id=record.id,
                role=role,
                telegram_id=int(from_user.id),
                chat_id=chat_id,
                photo_count=len(photos),
                submitted_at=submitted_at,
                username=getattr(from_user, "username", None),
                first_name=getattr(from_user, "first_name", None),
                last_name=getattr(from_user, "last_name", None),
                phone=session.phone_number,
            )
            result = await publish_verification_application(bot, db, application)
            if not result.ok:
                raise VerificationSubmissionError(result.status)
            record.moderation_token = result.token
            record.moderation_chat_id = result.chat_id
            record.moderation_message_id = result.message_id
    except VerificationSubmissionError as exc:
        logger.warning(
            "verification_submit_rejected",
            extra={"chat_id": chat_id, "role": role.value, "reason": exc.reason},
        )
        await _reply(bot, chat_id, session, VERIFICATION_CHANNEL_MISSING)
        return False
    except (LookupError, TelegramAPIError, *STORE_ERRORS) as exc:
        logger.error(
            "verification_submit_failed",
            extra={"chat_id": chat_id, "role": role.value, "error": str(exc)},
        )
        await _reply(bot, chat_id, session, VERIFICATION_SUBMIT_FAILED)
        return False

    forwarded = await _forward_photos(
        bot,
        target_chat_id=result.chat_id,
        source_chat_id=chat_id,
        photos=photos,
    )
    mark_submitted(
        verification,
        moderation=ModerationRef(
            application_id=record.id,
            chat_id=result.chat_id,
            message_id=result.message_id,
            token=result.token,
        ),
        forwarded_message_ids=forwarded,
        submitted_at=submitted_at,
    )
    logger.info(
        "verification_submitted",
        extra={
            "chat_id": chat_id,
            "role": role.value,
            "verification_id": record.id,
            "photos": len(photos),
            "forwarded": len(forwarded),
        },
    )
    return True


def _accepts_photos(session: SessionDocument, auth: AuthState | None) -> bool:
    state = session.executor
    if state.role is None or state.awaiting_role_selection:
        return False
    if _is_verified(session, auth):
        return False
    return state.verification[state.role].status in ("idle", "collecting")


def awaiting_verification_photo(
    message: Message,
    session: SessionDocument | None = None,
    auth: AuthState | None = None,
) -> bool:
    if session is None or message.chat.type != "private":
        return False
    return _accepts_photos(session, auth)


def collecting_verification_text(message: Message, session: SessionDocument | None = None) -> bool:
    if session is None or message.chat.type != "private":
        return False
    if not message.text or message.text.startswith("/"):
        return False
    role = session.executor.role
    if role is None:
        return False
    return session.executor.verification[role].status == "collecting"


async def _acknowledge(
    bot: Bot,
    chat_id: int,
    session: SessionDocument,
    verification: VerificationRoleState,
    decision: PhotoDecision,
) -> None:
    if decision.duplicate:
        text = VERIFICATION_DUPLICATE.format(uploaded=decision.uploaded, required=decision.required)
    else:
        text = _progress_text(verification)
    await _reply(bot, chat_id, session, text)


@router.message(F.photo, awaiting_verification_photo)
async def handle_verification_photo(
    message: Message,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    role = session.executor.role
    verification = session.executor.verification[role]
    if not start_collecting(verification):
        await _reply(message.bot, message.chat.id, session, VERIFICATION_ALREADY_SUBMITTED)
        return

    largest = message.photo[-1]
    decision = add_uploaded_photo(
        verification,
        UploadedPhoto(
            file_id=largest.file_id,
            file_unique_id=largest.file_unique_id,
            message_id=message.message_id,
        ),
    )
    logger.info(
        "verification_photo_received",
        extra={
            "chat_id": message.chat.id,
            "role": role.value,
            "accepted": decision.accepted,
            "duplicate": decision.duplicate,
            "uploaded": decision.uploaded,
            "required": decision.required,
        },
    )
    if decision.duplicate or not decision.complete:
        await _acknowledge(message.bot, message.chat.id, session, verification, decision)
        return

    submitted = await submit_verification(
        message.bot,
        db,
        chat_id=message.chat.id,
        from_user=message.from_user,
        session=session,
        role=role,
    )
    if submitted:
        await step_tracker.clear(message.bot, session, VERIFICATION_STEP_ID, cleanup_only=False)
        await _reply(message.bot, message.chat.id, session, VERIFICATION_SUBMITTED, ephemeral=False)
    await show_executor_menu(message.bot, message.chat.id, session, auth)


@router.message(F.text, collecting_verification_text)
async def handle_collecting_text(
    message: Message,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    verification = session.executor.verification[session.executor.role]
    verification.last_reminder_at = utcnow()
    await _reply(
        message.bot,
        message.chat.id,
        session,
        f"{VERIFICATION_REMINDER}\n{_progress_text(verification)}",
    )
    await show_executor_menu(message.bot, message.chat.id, session, auth)


@router.callback_query(F.data == EXECUTOR_VERIFICATION_ACTION)
async def handle_verification_start(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return
    await callback.answer()
    await start_executor_verification(callback.bot, message.chat.id, session, auth)
