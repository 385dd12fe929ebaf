from __future__ import annotations

from aiogram import Bot, F, Router
from aiogram.types import CallbackQuery, InlineKeyboardMarkup

from freedom_bot.bot.flows.client.copy import CLIENT_MENU_TEXT
from freedom_bot.bot.flows.executor.copy import CITY_LABELS, PRIVATE_ONLY
from freedom_bot.bot.flows.executor.menu import EXECUTOR_ROLE_SWITCH_ACTION
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.ui import StepResult, step_tracker
from freedom_bot.db.models import OrderKind

CLIENT_MENU_STEP_ID = "client:menu"
CLIENT_MENU_ACTION = "client:menu"
SUPPORT_ACTION = "support:start"

ORDER_ACTION_PREFIX = "client:order:"


def order_action(kind: OrderKind, action: str) -> str:
    return f"{ORDER_ACTION_PREFIX}{kind.value}:{action}"


router = Router()


def build_client_menu_keyboard() -> InlineKeyboardMarkup:
    return build_keyboard(
        [
            [callback_button("🚕 Заказать такси", order_action(OrderKind.TAXI, "start"))],
            [callback_button("📦 Оформить доставку", order_action(OrderKind.DELIVERY, "start"))],
            [callback_button("🆘 Поддержка", SUPPORT_ACTION)],
            [callback_button("👥 Сменить роль", EXECUTOR_ROLE_SWITCH_ACTION)],
        ]
    )


async def show_client_menu(
    bot: Bot, chat_id: int, session: SessionDocument, *, notice: str | None = None
) -> StepResult:
    lines = [notice, ""] if notice else []
    lines.append(CLIENT_MENU_TEXT)
    if session.city:
        lines.append(f"Город: {CITY_LABELS.get(session.city, session.city)}.")
    return await step_tracker.step(
        bot,
        chat_id,
        session,
        step_id=CLIENT_MENU_STEP_ID,
        text="\n".join(lines),
        keyboard=build_client_menu_keyboard(),
        home_action=CLIENT_MENU_ACTION,
        cleanup=False,
    )


@router.callback_query(F.data == CLIENT_MENU_ACTION)
async def handle_client_menu(callback: CallbackQuery, session: SessionDocument) -> None:
    message = callback.message
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return
    await callback.answer()
    await show_client_menu(callback.bot, message.chat.id, session)
