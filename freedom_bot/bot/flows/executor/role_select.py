from __future__ import annotations

import logging

from aiogram import Bot, F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.auth import AuthState, update_user_city, update_user_role
from freedom_bot.bot.flows.client.menu import show_client_menu
from freedom_bot.bot.flows.common.phone import request_phone
from freedom_bot.bot.flows.executor.copy import (
    CITY_LABELS,
    CITY_PICK_TEXT,
    EXECUTOR_KIND_TEXT,
    MODERATOR_ROLE_LOCKED,
    PRIVATE_ONLY,
    ROLE_COPY,
    ROLE_PICK_TEXT,
)
from freedom_bot.bot.flows.executor.menu import EXECUTOR_ROLE_SWITCH_ACTION, show_executor_menu
from freedom_bot.bot.flows.executor.state import (
    apply_executor_role,
    begin_role_switch,
    finish_role_selection,
)
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.roles import ExecutorRole, UserRole
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.ui import StepResult, step_tracker

logger = logging.getLogger(__name__)

ROLE_STEP_ID = "role:pick"
CITY_STEP_ID = "city:pick"

ROLE_CLIENT_ACTION = "role:client"
ROLE_EXECUTOR_ACTION = "role:executor"
ROLE_KIND_PREFIX = "role:kind:"
CITY_PREFIX = "city:"

router = Router()


def build_role_keyboard() -> InlineKeyboardMarkup:
    return build_keyboard(
        [
            [callback_button("🙋 Я клиент", ROLE_CLIENT_ACTION)],
            [callback_button("🧑‍💼 Я исполнитель", ROLE_EXECUTOR_ACTION)],
        ]
    )


def build_executor_kind_keyboard(*, include_client: bool = False) -> InlineKeyboardMarkup:
    rows = [
        [callback_button(f"{copy.emoji} {copy.noun.capitalize()}", f"{ROLE_KIND_PREFIX}{role.value}")]
        for role, copy in ROLE_COPY.items()
    ]
    if include_client:
        rows.append([callback_button("🙋 Я клиент", ROLE_CLIENT_ACTION)])
    return build_keyboard(rows)


def build_city_keyboard() -> InlineKeyboardMarkup:
    return build_keyboard(
        [[callback_button(label, f"{CITY_PREFIX}{code}")] for code, label in CITY_LABELS.items()]
    )


async def show_role_pick(bot: Bot, chat_id: int, session: SessionDocument) -> StepResult:
    session.executor.awaiting_role_selection = True
    session.executor.role_selection_stage = "role"
    return await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=ROLE_STEP_ID,
        text=ROLE_PICK_TEXT,
        keyboard=build_role_keyboard(),
    )


async def show_executor_kind_pick(
    bot: Bot, chat_id: int, session: SessionDocument, *, include_client: bool = False
) -> StepResult:
    session.executor.awaiting_role_selection = True
    session.executor.role_selection_stage = "executorKind"
    return await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=ROLE_STEP_ID,
        text=EXECUTOR_KIND_TEXT,
        keyboard=build_executor_kind_keyboard(include_client=include_client),
    )


async def show_city_pick(bot: Bot, chat_id: int, session: SessionDocument) -> StepResult:
    return await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=CITY_STEP_ID,
        text=CITY_PICK_TEXT,
        keyboard=build_city_keyboard(),
    )


async def _persist_role(db: AsyncSession | None, telegram_id: int, role: UserRole) -> None:
    if db is None:
        logger.info("role_persist_skipped", extra={"user_id": telegram_id, "role": role.value})
        return
    updated = await update_user_role(db, telegram_id, role)
    if not updated:
        logger.info("role_persist_refused", extra={"user_id": telegram_id, "role": role.value})


def _is_moderator(auth: AuthState | None) -> bool:
    return auth is not None and auth.is_moderator


async def _private_callback(callback: CallbackQuery) -> Message | None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return None
    return message


@router.callback_query(F.data == ROLE_CLIENT_ACTION)
async def handle_client_role(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    if _is_moderator(auth):
        await callback.answer(MODERATOR_ROLE_LOCKED, show_alert=True)
        return
    await callback.answer()
    await _persist_role(db, callback.from_user.id, UserRole.CLIENT)
    session.executor.role = None
    await step_tracker.clear(callback.bot, session, ROLE_STEP_ID, cleanup_only=False)

    if not session.city:
        session.executor.awaiting_role_selection = True
        session.executor.role_selection_stage = "city"
        session.ui.pending_city_action = "clientMenu"
        await show_city_pick(callback.bot, message.chat.id, session)
        return
    finish_role_selection(session.executor)
    await show_client_menu(callback.bot, message.chat.id, session)
    if not session.phone_number:
        await request_phone(callback.bot, message.chat.id, session)


@router.callback_query(F.data == ROLE_EXECUTOR_ACTION)
async def handle_executor_role(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    if _is_moderator(auth):
        await callback.answer(MODERATOR_ROLE_LOCKED, show_alert=True)
        return
    await callback.answer()
    await show_executor_kind_pick(callback.bot, message.chat.id, session)


@router.callback_query(F.data.startswith(ROLE_KIND_PREFIX))
async def handle_executor_kind(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    if _is_moderator(auth):
        await callback.answer(MODERATOR_ROLE_LOCKED, show_alert=True)
        return
    raw_role = callback.data[len(ROLE_KIND_PREFIX) :]
    try:
        role = ExecutorRole(raw_role)
    except ValueError:
        await callback.answer()
        return
    await callback.answer()

    await _persist_role(db, callback.from_user.id, UserRole(role.value))
    apply_executor_role(session.executor, role, city_required=not session.city)
    logger.info("executor_role_selected", extra={"user_id": callback.from_user.id, "role": role.value})
    await step_tracker.clear(callback.bot, session, ROLE_STEP_ID, cleanup_only=False)

    if session.executor.role_selection_stage == "city":
        session.ui.pending_city_action = "executorMenu"
        await show_city_pick(callback.bot, message.chat.id, session)
        return
    await show_executor_menu(callback.bot, message.chat.id, session, auth)


@router.callback_query(F.data.startswith(CITY_PREFIX))
async def handle_city_pick(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
    db: AsyncSession | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    city = callback.data[len(CITY_PREFIX) :]
    if city not in CITY_LABELS:
        await callback.answer("Этот город пока не поддерживается.", show_alert=True)
        return
    await callback.answer(f"Город: {CITY_LABELS[city]}")

    session.city = city
    if db is not None:
        await update_user_city(db, callback.from_user.id, city)
    await step_tracker.clear(callback.bot, session, CITY_STEP_ID, cleanup_only=False)

    pending = session.ui.pending_city_action
    session.ui.pending_city_action = None
    finish_role_selection(session.executor)
    if pending == "executorMenu" or (pending is None and session.executor.role is not None):
        await show_executor_menu(callback.bot, message.chat.id, session, auth)
        return
    await show_client_menu(callback.bot, message.chat.id, session)
    if not session.phone_number:
        await request_phone(callback.bot, message.chat.id, session)


async def _switch_role(bot: Bot, chat_id: int, session: SessionDocument) -> None:
    previous = session.executor.role
    begin_role_switch(session.executor)
    logger.info(
        "executor_role_switch_started",
        extra={"chat_id": chat_id, "previous_role": previous.value if previous else None},
    )
    await step_tracker.clear(bot, session, cleanup_only=False)
    await show_executor_kind_pick(bot, chat_id, session, include_client=True)


@router.message(Command("role"))
async def handle_role_command(
    message: Message,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    if message.chat.type != "private":
        await message.answer(PRIVATE_ONLY)
        return
    if _is_moderator(auth):
        await message.answer(MODERATOR_ROLE_LOCKED)
        return
    await _switch_role(message.bot, message.chat.id, session)


@router.callback_query(F.data == EXECUTOR_ROLE_SWITCH_ACTION)
async def handle_role_switch(
    callback: CallbackQuery,
    session: SessionDocument,
    auth: AuthState | None = None,
) -> None:
    message = await _private_callback(callback)
    if message is None:
        return
    if _is_moderator(auth):
        await callback.answer(MODERATOR_ROLE_LOCKED, show_alert=True)
        return
    await callback.answer()
    await _switch_role(callback.bot, message.chat.id, session)

