from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from aiogram import BaseMiddleware, Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineKeyboardMarkup, ReplyKeyboardMarkup, TelegramObject, Update

from freedom_bot.bot.keyboards import HOME_BUTTON_LABEL, append_home_button
from freedom_bot.bot.session.document import SessionDocument, TrackedStep
from freedom_bot.bot.telegram import is_message_not_modified, with_telegram_retries

logger = logging.getLogger(__name__)

Keyboard = InlineKeyboardMarkup | ReplyKeyboardMarkup


@dataclass(frozen=True)
class StepResult:
    message_id: int
    sent: bool


def register_home_action(session: SessionDocument, action: str) -> None:
    if action not in session.ui.home_actions:
        session.ui.home_actions.append(action)


def remember_ephemeral(session: SessionDocument, message_id: int) -> None:
    if message_id not in session.ephemeral_messages:
        session.ephemeral_messages.append(message_id)


class StepTracker:
    """Привязывает логический шаг диалога к последнему сообщению, которым он отрисован.

    Повторный вызов с тем же step_id редактирует сообщение на месте; если
    редактирование не удалось, отправляется новое сообщение и привязка
    обновляется.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    async def step(
        self,
        bot: Bot,
        chat_id: int,
        session: SessionDocument,
        *,
        step_id: str,
        text: str,
        keyboard: Keyboard | None = None,
        home_action: str | None = None,
        home_label: str = HOME_BUTTON_LABEL,
        cleanup: bool | None = None,
        parse_mode: str | None = None,
    ) -> StepResult:
        should_cleanup = cleanup if cleanup is not None else bool(home_action)
        is_inline = keyboard is None or isinstance(keyboard, InlineKeyboardMarkup)

        reply_markup = keyboard
        if home_action:
            register_home_action(session, home_action)
            if is_inline:
                reply_markup = append_home_button(keyboard, home_action, home_label)

        existing = session.ui.steps.get(step_id)
        if existing is not None and existing.chat_id == chat_id and is_inline:
            edited = await self._try_edit(
                bot, existing, text=text, reply_markup=reply_markup, parse_mode=parse_mode, step_id=step_id
            )
            if edited:
                existing.cleanup = should_cleanup
                return StepResult(message_id=existing.message_id, sent=False)

        message = await with_telegram_retries(
            lambda: bot.send_message(
                chat_id=chat_id,
                text=text,
                reply_markup=reply_markup,
                parse_mode=parse_mode,
            ),
            operation_name="step_send",
        )
        session.ui.steps[step_id] = TrackedStep(
            chat_id=chat_id, message_id=message.message_id, cleanup=should_cleanup
        )
        return StepResult(message_id=message.message_id, sent=True)

    async def _try_edit(
        self,
        bot: Bot,
        existing: TrackedStep,
        *,
        text: str,
        reply_markup: Keyboard | None,
        parse_mode: str | None,
        step_id: str,
    ) -> bool:
        try:
            await with_telegram_retries(
                lambda: bot.edit_message_text(
                    chat_id=existing.chat_id,
                    message_id=existing.message_id,
                    text=text,
                    reply_markup=reply_markup,
                    parse_mode=parse_mode,
                ),
                operation_name="step_edit",
            )
        except TelegramAPIError as exc:
            if is_message_not_modified(exc):
                self._logger.debug(
                    "step_not_modified",
                    extra={"chat_id": existing.chat_id, "stepId": step_id},
                )
                return True
            self._logger.info(
                "step_edit_failed",
                extra={
                    "chat_id": existing.chat_id,
                    "message_id": existing.message_id,
                    "stepId": step_id,
                    "error": str(exc),
                },
            )
            return False
        return True

    async def clear(
        self,
        bot: Bot,
        session: SessionDocument,
        ids: Iterable[str] | str | None = None,
        *,
        cleanup_only: bool = True,
    ) -> None:
        if isinstance(ids, str):
            wanted = {ids}
        else:
            wanted = set(ids) if ids is not None else None

        for step_id, step in list(session.ui.steps.items()):
            if wanted is not None and step_id not in wanted:
                continue
            if cleanup_only and not step.cleanup:
                continue
            try:
                await bot.delete_message(chat_id=step.chat_id, message_id=step.message_id)
            except TelegramAPIError as exc:
                self._logger.debug(
                    "step_delete_failed",
                    extra={
                        "chat_id": step.chat_id,
                        "message_id": step.message_id,
                        "stepId": step_id,
                        "error": str(exc),
                    },
                )
            session.ui.steps.pop(step_id, None)


step_tracker = StepTracker()


class UiMiddleware(BaseMiddleware):
    """Удаляет эфемерные сообщения прошлого апдейта и чистит шаги при переходе «домой»."""

    def __init__(self, tracker: StepTracker | None = None) -> None:
        self._tracker = tracker or step_tracker

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        session: SessionDocument | None = data.get("session")
        bot: Bot | None = data.get("bot")
        chat = data.get("event_chat")
        if session is None or bot is None:
            return await handler(event, data)

        if chat is not None and session.ephemeral_messages:
            pending = list(session.ephemeral_messages)
            session.ephemeral_messages = []
            for message_id in pending:
                try:
                    await bot.delete_message(chat_id=chat.id, message_id=message_id)
                except TelegramAPIError as exc:
                    logger.info(
                        "ephemeral_delete_failed",
                        extra={"chat_id": chat.id, "message_id": message_id, "error": str(exc)},
                    )

        callback_data = _callback_data(event)
        if callback_data and callback_data in session.ui.home_actions:
            await self._tracker.clear(bot, session)

        return await handler(event, data)


def _callback_data(event: TelegramObject) -> str | None:
    if isinstance(event, Update) and event.callback_query is not None:
        return event.callback_query.data
    return None
