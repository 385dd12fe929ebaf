from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Literal

from aiogram import Bot, F, Router
from aiogram.dispatcher.event.bases import SkipHandler
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.channels import get_channel_binding
from freedom_bot.bot.flows.client.copy import (
    SUPPORT_PROMPT,
    SUPPORT_RETRY,
    SUPPORT_SENT,
    SUPPORT_SENT_WITH_ID,
    SUPPORT_UNAVAILABLE,
)
from freedom_bot.bot.flows.client.menu import SUPPORT_ACTION, show_client_menu
from freedom_bot.bot.flows.client.state import (
    begin_support_request,
    cancel_support_request,
    finish_support_request,
)
from freedom_bot.bot.flows.executor.copy import PRIVATE_ONLY
from freedom_bot.bot.flows.executor.menu import show_executor_menu
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.session.middleware import STORE_ERRORS
from freedom_bot.bot.telegram import with_telegram_retries
from freedom_bot.bot.ui import remember_ephemeral
from freedom_bot.db.models import SupportThread

logger = logging.getLogger(__name__)

router = Router()


@dataclass(frozen=True)
class SupportForwardResult:
    status: Literal["forwarded", "missing_channel", "failed"]
    thread_id: str | None = None
    short_id: str | None = None


def create_thread_ids() -> tuple[str, str]:
    thread_id = secrets.token_hex(8)
    return thread_id, thread_id[:6].upper()


def describe_sender(user: Any, phone: str | None) -> str:
    if user is None:
        return "неизвестный пользователь"
    parts = []
    if getattr(user, "username", None):
        parts.append(f"@{user.username}")
    full_name = " ".join(
        part for part in (getattr(user, "first_name", None), getattr(user, "last_name", None)) if part
    )
    if full_name:
        parts.append(full_name)
    parts.append(f"ID {user.id}")
    if phone:
        parts.append(f"тел. {phone}")
    return ", ".join(parts)


def build_support_header(short_id: str, sender: str) -> str:
    return f"🆘 Обращение в поддержку №{short_id}\nОт: {sender}"


def is_command_message(message: Message) -> bool:
    text = message.text or message.caption or ""
    return text.startswith("/")


async def forward_support_message(
    bot: Bot,
    db: AsyncSession | None,
    message: Message,
    session: SessionDocument,
) -> SupportForwardResult:
    """Пересылает сообщение пользователя в чат модерации и заводит обращение.

    Без базы сообщение всё равно пересылается, но обращение не сохраняется.
    """
    binding = await get_channel_binding(db, "verify")
    if binding is None:
        logger.warning("support_channel_missing", extra={"chat_id": message.chat.id})
        return SupportForwardResult(status="missing_channel")

    thread_id, short_id = create_thread_ids()
    header = build_support_header(short_id, describe_sender(message.from_user, session.phone_number))

    async def deliver() -> int:
        await with_telegram_retries(
            lambda: bot.send_message(chat_id=binding.chat_id, text=header),
            operation_name="support_header",
        )
        copied = await with_telegram_retries(
            lambda: bot.copy_message(
                chat_id=binding.chat_id,
                from_chat_id=message.chat.id,
                message_id=message.message_id,
            ),
            operation_name="support_forward",
        )
        return copied.message_id

    try:
        if db is None:
            await deliver()
            return SupportForwardResult(status="forwarded")
        async with db.begin_nested():
            thread = SupportThread(
                id=thread_id,
                short_id=short_id,
                user_chat_id=message.chat.id,
                user_telegram_id=message.from_user.id if message.from_user else None,
                user_message_id=message.message_id,
                moderator_chat_id=binding.chat_id,
            )
            db.add(thread)
            await db.flush()
            thread.moderator_message_id = await deliver()
    except (TelegramAPIError, *STORE_ERRORS) as exc:
        logger.error(
            "support_forward_failed",
            extra={"chat_id": message.chat.id, "error": str(exc)},
        )
        return SupportForwardResult(status="failed")

    return SupportForwardResult(status="forwarded", thread_id=thread_id, short_id=short_id)


async def show_support_home(
    bot: Bot, chat_id: int, session: SessionDocument, auth: AuthState | None, notice: str
) -> None:
    if session.executor.role is not None:
        await with_telegram_retries(
            lambda: bot.send_message(chat_id=chat_id, text=notice),
            operation_name="support_notice",
        )
        await show_executor_menu(bot, chat_id, session, auth)
        return
    await show_client_menu(bot, chat_id, session, notice=notice)


async def prompt_support(bot: Bot, chat_id: int, session: SessionDocument) -> None:
    begin_support_request(session.support)
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=chat_id, text=SUPPORT_PROMPT),
        operation_name="support_prompt",
    )
    remember_ephemeral(session, message.message_id)


def awaiting_support_message(message: Message, session: SessionDocument | None = None) -> bool:
    if session is None or message.chat.type != "private":
        return False
    return session.support.status == "awaiting_message"


@router.message(Command("support"))
async def handle_support_command(message: Message, session: SessionDocument) -> None:
    if message.chat.type != "private":
        await message.answer(PRIVATE_ONLY)
        return
    await prompt_support(message.bot, message.chat.id, session)


@router.callback_query(F.data == SUPPORT_ACTION)
async def handle_support_action(callback: CallbackQuery, session: SessionDocument) -> None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return
    await callback.answer()
    await prompt_support(callback.bot, message.chat.id, session)


@router.message(awaiting_support_message)
async def handle_support_message(
    message: Message,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    support = session.support
    if is_command_message(message):
        # Команда отменяет обращение и обрабатывается своим хэндлером.
        cancel_support_request(support)
        raise SkipHandler()

    result = await forward_support_message(message.bot, db, message, session)
    chat_id = message.chat.id
    logger.info("support_message_handled", extra={"chat_id": chat_id, "status": result.status})
    if result.status == "failed":
        await message.answer(SUPPORT_RETRY)
        return

    if result.status == "missing_channel":
        finish_support_request(support)
        await show_support_home(message.bot, chat_id, session, auth, SUPPORT_UNAVAILABLE)
        return

    finish_support_request(support, thread_id=result.thread_id, short_id=result.short_id)
    notice = SUPPORT_SENT_WITH_ID.format(short_id=result.short_id) if result.short_id else SUPPORT_SENT
    await show_support_home(message.bot, chat_id, session, auth, notice)
