from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from aiogram import Bot, F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from sqlalchemy.ext.asyncio import AsyncSession

from freedom_bot.bot.channels import get_channel_binding
from freedom_bot.bot.flows.client.copy import (
    ORDER_ADDRESS_EMPTY,
    ORDER_CHANNEL_MISSING,
    ORDER_CONFIRM_HINT,
    ORDER_COPY,
    ORDER_CREATE_FAILED,
    ORDER_CREATED,
    ORDER_DRAFT_MISSING,
    ORDER_IN_PROGRESS,
    ORDER_PHONE_REQUIRED,
    ORDER_USE_BUTTONS,
)
from freedom_bot.bot.flows.client.menu import ORDER_ACTION_PREFIX, order_action, show_client_menu
from freedom_bot.bot.flows.client.state import (
    active_order_draft,
    apply_dropoff,
    apply_pickup,
    begin_order_creation,
    get_order_draft,
    normalize_address,
    reset_order_draft,
    start_order_draft,
)
from freedom_bot.bot.flows.common.phone import request_phone
from freedom_bot.bot.flows.executor.copy import CITY_LABELS, PRIVATE_ONLY
from freedom_bot.bot.keyboards import build_keyboard, callback_button
from freedom_bot.bot.session.document import OrderDraftState, SessionDocument
from freedom_bot.bot.session.middleware import STORE_ERRORS
from freedom_bot.bot.telegram import with_telegram_retries
from freedom_bot.bot.ui import remember_ephemeral, step_tracker
from freedom_bot.db.models import Order, OrderKind

logger = logging.getLogger(__name__)

OrderAction = Literal["start", "confirm", "cancel"]
CANCEL_WORDS = frozenset({"/cancel", "отмена", "cancel"})

router = Router()


@dataclass(frozen=True)
class OrderPublishResult:
    status: Literal["published", "missing_channel"]
    chat_id: int | None = None
    message_id: int | None = None

    @property
    def published(self) -> bool:
        return self.status == "published"


def confirmation_step_id(kind: OrderKind) -> str:
    return f"client:order:{kind.value}:confirm"


def parse_order_action(data: str | None) -> tuple[OrderKind, OrderAction] | None:
    if not data or not data.startswith(ORDER_ACTION_PREFIX):
        return None
    raw_kind, _, action = data[len(ORDER_ACTION_PREFIX) :].partition(":")
    try:
        kind = OrderKind(raw_kind)
    except ValueError:
        return None
    if action not in ("start", "confirm", "cancel"):
        return None
    return kind, action


def is_cancel_text(text: str) -> bool:
    return text.strip().lower() in CANCEL_WORDS


async def _reply(bot: Bot, chat_id: int, session: SessionDocument, text: str) -> None:
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=chat_id, text=text),
        operation_name="order_reply",
    )
    remember_ephemeral(session, message.message_id)


def build_confirmation_keyboard(kind: OrderKind) -> InlineKeyboardMarkup:
    return build_keyboard(
        [
            [callback_button("✅ Подтвердить", order_action(kind, "confirm"))],
            [callback_button("❌ Отменить", order_action(kind, "cancel"))],
        ]
    )


def build_order_summary(kind: OrderKind, draft: OrderDraftState) -> str:
    copy = ORDER_COPY[kind]
    return "\n".join(
        [
            f"{copy.emoji} {copy.title}",
            "",
            f"{copy.pickup_label}: {draft.pickup.address}",
            f"{copy.dropoff_label}: {draft.dropoff.address}",
            "",
            ORDER_CONFIRM_HINT,
        ]
    )


def build_channel_card(order: Order) -> str:
    copy = ORDER_COPY[order.kind]
    lines = [
        f"{copy.emoji} Новый заказ №{order.id}",
        f"{copy.pickup_label}: {order.pickup_address}",
        f"{copy.dropoff_label}: {order.dropoff_address}",
    ]
    if order.city:
        lines.append(f"Город: {CITY_LABELS.get(order.city, order.city)}")
    return "\n".join(lines)


async def create_order_record(
    db: AsyncSession,
    *,
    kind: OrderKind,
    client_telegram_id: int,
    session: SessionDocument,
    draft: OrderDraftState,
) -> Order:
    order = Order(
        kind=kind,
        client_telegram_id=client_telegram_id,
        client_phone=session.phone_number,
        city=session.city,
        pickup_address=draft.pickup.address,
        dropoff_address=draft.dropoff.address,
    )
    db.add(order)
    await db.flush()
    return order


async def publish_order(bot: Bot, db: AsyncSession, order: Order) -> OrderPublishResult:
    binding = await get_channel_binding(db, "drivers")
    if binding is None:
        logger.warning("order_channel_missing", extra={"order_id": order.id})
        return OrderPublishResult(status="missing_channel")
    message = await with_telegram_retries(
        lambda: bot.send_message(chat_id=binding.chat_id, text=build_channel_card(order)),
        operation_name="order_publish",
    )
    order.channel_chat_id = binding.chat_id
    order.channel_message_id = message.message_id
    return OrderPublishResult(
        status="published", chat_id=binding.chat_id, message_id=message.message_id
    )


async def start_order(bot: Bot, chat_id: int, session: SessionDocument, kind: OrderKind) -> None:
    if not session.phone_number:
        await _reply(bot, chat_id, session, ORDER_PHONE_REQUIRED)
        await request_phone(bot, chat_id, session)
        return
    start_order_draft(session.client, kind)
    await step_tracker.clear(
        bot, session, [confirmation_step_id(item) for item in OrderKind], cleanup_only=False
    )
    logger.info("order_draft_started", extra={"chat_id": chat_id, "kind": kind.value})
    await _reply(bot, chat_id, session, ORDER_COPY[kind].pickup_prompt)


async def _finish_order(
    bot: Bot, chat_id: int, session: SessionDocument, kind: OrderKind, notice: str
) -> None:
    reset_order_draft(get_order_draft(session.client, kind))
    await step_tracker.clear(bot, session, confirmation_step_id(kind), cleanup_only=False)
    await show_client_menu(bot, chat_id, session, notice=notice)


async def cancel_order(bot: Bot, chat_id: int, session: SessionDocument, kind: OrderKind) -> None:
    logger.info("order_draft_cancelled", extra={"chat_id": chat_id, "kind": kind.value})
    await _finish_order(bot, chat_id, session, kind, ORDER_COPY[kind].cancelled)


async def confirm_order(
    bot: Bot,
    db: AsyncSession | None,
    *,
    chat_id: int,
    client_telegram_id: int,
    session: SessionDocument,
    kind: OrderKind,
) -> bool:
    """Сохраняет заказ и публикует его в канал исполнителей.

    Черновик сбрасывается при любом исходе, ошибка показывается в меню клиента.
    """
    draft = get_order_draft(session.client, kind)
    if db is None:
        logger.error("order_create_unavailable", extra={"chat_id": chat_id, "kind": kind.value})
        await _finish_order(bot, chat_id, session, kind, ORDER_CREATE_FAILED)
        return False

    try:
        async with db.begin_nested():
            order = await create_order_record(
                db,
                kind=kind,
                client_telegram_id=client_telegram_id,
                session=session,
                draft=draft,
            )
            result = await publish_order(bot, db, order)
    except (TelegramAPIError, *STORE_ERRORS) as exc:
        logger.error(
            "order_create_failed",
            extra={"chat_id": chat_id, "kind": kind.value, "error": str(exc)},
        )
        await _finish_order(bot, chat_id, session, kind, ORDER_CREATE_FAILED)
        return False

    logger.info(
        "order_created",
        extra={
            "chat_id": chat_id,
            "order_id": order.id,
            "kind": kind.value,
            "published": result.published,
        },
    )
    notice = ORDER_CREATED.format(order_id=order.id)
    if not result.published:
        notice = f"{notice}\n{ORDER_CHANNEL_MISSING}"
    await _finish_order(bot, chat_id, session, kind, notice)
    return True


def order_draft_text(message: Message, session: SessionDocument | None = None) -> bool:
    if session is None or message.chat.type != "private" or not message.text:
        return False
    if active_order_draft(session.client) is None:
        return False
    return not message.text.startswith("/") or is_cancel_text(message.text)


@router.message(F.text, order_draft_text)
async def handle_order_text(message: Message, session: SessionDocument) -> None:
    kind, draft = active_order_draft(session.client)
    bot = message.bot
    chat_id = message.chat.id
    if is_cancel_text(message.text):
        await cancel_order(bot, chat_id, session, kind)
        return

    if draft.stage in ("collecting_pickup", "collecting_dropoff"):
        address = normalize_address(message.text)
        if address is None:
            await _reply(bot, chat_id, session, ORDER_ADDRESS_EMPTY)
            return
        if draft.stage == "collecting_pickup":
            apply_pickup(draft, address)
            await _reply(bot, chat_id, session, ORDER_COPY[kind].dropoff_prompt.format(pickup=address))
            return
        if not apply_dropoff(draft, address):
            logger.warning("order_draft_missing_pickup", extra={"chat_id": chat_id, "kind": kind.value})
            await _reply(bot, chat_id, session, ORDER_DRAFT_MISSING)
            return
        await step_tracker.step(
            bot,
            chat_id,
            session,
            step_id=confirmation_step_id(kind),
            text=build_order_summary(kind, draft),
            keyboard=build_confirmation_keyboard(kind),
            cleanup=False,
        )
        return

    await _reply(bot, chat_id, session, ORDER_USE_BUTTONS)


@router.message(Command("taxi", "delivery"))
async def handle_order_command(
    message: Message, command: CommandObject, session: SessionDocument
) -> None:
    if message.chat.type != "private":
        await message.answer(PRIVATE_ONLY)
        return
    await start_order(message.bot, message.chat.id, session, OrderKind(command.command))


@router.callback_query(F.data.startswith(ORDER_ACTION_PREFIX))
async def handle_order_action(
    callback: CallbackQuery,
    session: SessionDocument,
    db: AsyncSession | None = None,
) -> None:
    parsed = parse_order_action(callback.data)
    message = callback.message
    if parsed is None:
        await callback.answer()
        return
    if message is None or message.chat.type != "private":
        await callback.answer(PRIVATE_ONLY)
        return
    kind, action = parsed
    chat_id = message.chat.id

    if action == "start":
        await callback.answer()
        await start_order(callback.bot, chat_id, session, kind)
        return
    if action == "cancel":
        await callback.answer()
        await cancel_order(callback.bot, chat_id, session, kind)
        return

    draft = get_order_draft(session.client, kind)
    if draft.stage == "creating_order":
        await callback.answer(ORDER_IN_PROGRESS)
        return
    if not begin_order_creation(draft):
        await callback.answer(ORDER_DRAFT_MISSING, show_alert=True)
        reset_order_draft(draft)
        await step_tracker.clear(callback.bot, session, confirmation_step_id(kind), cleanup_only=False)
        return
    await callback.answer()
    await confirm_order(
        callback.bot,
        db,
        chat_id=chat_id,
        client_telegram_id=callback.from_user.id,
        session=session,
        kind=kind,
    )
