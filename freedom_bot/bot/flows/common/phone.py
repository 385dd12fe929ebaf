from __future__ import annotations

import logging

from aiogram import Bot, F, Router
from aiogram.types import KeyboardButton, Message, ReplyKeyboardMarkup, ReplyKeyboardRemove
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import update_user_phone
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.telegram import with_telegram_retries
from freedom_bot.bot.ui import remember_ephemeral

logger = logging.getLogger(__name__)

PHONE_REQUEST_TEXT = "Поделитесь номером телефона, чтобы мы могли связаться с вами по заказу."
PHONE_SAVED_TEXT = "Спасибо! Номер телефона сохранён."
PHONE_FOREIGN_CONTACT_TEXT = "Отправьте, пожалуйста, свой номер с помощью кнопки ниже."


def build_phone_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text="📱 Отправить номер", request_contact=True)]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


def normalize_phone(raw: str) -> str:
    digits = "".join(char for char in raw if char.isdigit())
    return f"+{digits}" if digits else raw.strip()


async def request_phone(bot: Bot, chat_id: int, session: SessionDocument) -> None:
    session.awaiting_phone = True
    message = await with_telegram_retries(
        lambda: bot.send_message(
            chat_id=chat_id, text=PHONE_REQUEST_TEXT, reply_markup=build_phone_keyboard()
        ),
        operation_name="phone_request",
    )
    remember_ephemeral(session, message.message_id)


router = Router()


@router.message(F.contact)
async def handle_contact(
    message: Message,
    session: SessionDocument,
    db: AsyncSession | None = None,
) -> None:
    contact = message.contact
    if message.from_user is None or contact is None:
        return
    if contact.user_id is not None and contact.user_id != message.from_user.id:
        await message.answer(PHONE_FOREIGN_CONTACT_TEXT, reply_markup=build_phone_keyboard())
        return

    phone = normalize_phone(contact.phone_number)
    if db is not None:
        await update_user_phone(db, message.from_user.id, phone)
    session.phone_number = phone
    session.awaiting_phone = False
    logger.info("phone_saved", extra={"user_id": message.from_user.id, "persisted": db is not None})
    await message.answer(PHONE_SAVED_TEXT, reply_markup=ReplyKeyboardRemove())
