from __future__ import annotations

from aiogram import Router
from aiogram.types import CallbackQuery, Message

from freedom_bot.bot.auth import AuthState
from freedom_bot.bot.handlers.start import show_home
from freedom_bot.bot.session.document import SessionDocument

router = Router()


@router.message()
async def handle_unhandled_message(
    message: Message,
    session: SessionDocument | None = None,
    auth: AuthState | None = None,
) -> None:
    if message.from_user is None or message.chat.type != "private" or session is None:
        return
    await show_home(message.bot, message.chat.id, session, auth)


@router.callback_query()
async def handle_unhandled_callback(callback: CallbackQuery) -> None:
    await callback.answer()
