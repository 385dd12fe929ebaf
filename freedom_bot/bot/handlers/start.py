from __future__ import annotations

import logging

from aiogram import Bot, Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.flows.client.menu import show_client_menu
from freedom_bot.bot.flows.executor.copy import PRIVATE_ONLY
from freedom_bot.bot.flows.executor.menu import show_executor_menu
from freedom_bot.bot.flows.executor.role_select import show_role_pick
from freedom_bot.bot.roles import UserRole, is_executor_role
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.session.middleware import SessionControl
from freedom_bot.bot.ui import step_tracker

logger = logging.getLogger(__name__)

LOGOUT_TEXT = "Сессия сброшена. Нажмите /start, чтобы начать заново."

router = Router()


async def show_home(bot: Bot, chat_id: int, session: SessionDocument, auth: AuthState | None) -> None:
    """Главный экран по роли пользователя: меню исполнителя, клиента или выбор роли."""
    role = auth.user.role if auth is not None else None
    if session.executor.role is not None and (role is None or is_executor_role(role)):
        await show_executor_menu(bot, chat_id, session, auth)
        return
    if role is UserRole.CLIENT and session.city and auth is not None and auth.user.status != "guest":
        await show_client_menu(bot, chat_id, session)
        return
    await show_role_pick(bot, chat_id, session)


async def _reset_session(bot: Bot, session: SessionDocument, control: SessionControl | None) -> None:
    await step_tracker.clear(bot, session, cleanup_only=False)
    if control is not None:
        control.clear()


@router.message(CommandStart())
async def handle_start(
    message: Message,
    session: SessionDocument,
    session_control: SessionControl | None = None,
    auth: AuthState | None = None,
) -> None:
    if message.chat.type != "private":
        await message.answer(PRIVATE_ONLY)
        return
    logger.info("start_command", extra={"chat_id": message.chat.id})
    await _reset_session(message.bot, session, session_control)
    await show_home(message.bot, message.chat.id, session, auth)


@router.message(Command("logout"))
async def handle_logout(
    message: Message,
    session: SessionDocument,
    session_control: SessionControl | None = None,
) -> None:
    logger.info("logout_command", extra={"chat_id": message.chat.id})
    await _reset_session(message.bot, session, session_control)
    await message.answer(LOGOUT_TEXT)
