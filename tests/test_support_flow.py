import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from aiogram.dispatcher.event.bases import SkipHandler
from aiogram.exceptions import TelegramBadRequest
from sqlalchemy import select

from db_helpers import create_schema, create_sqlite_engine, make_factory
from flow_helpers import build_bot, build_callback, build_text_message, sent_texts

from freedom_bot.bot.channels import ChannelBinding
from freedom_bot.bot.flows.client.copy import (
    SUPPORT_PROMPT,
    SUPPORT_RETRY,
    SUPPORT_SENT,
    SUPPORT_UNAVAILABLE,
)
from freedom_bot.bot.flows.client.menu import SUPPORT_ACTION
from freedom_bot.bot.flows.common import support as support_flow
from freedom_bot.bot.flows.executor.menu import EXECUTOR_MENU_STEP_ID
from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.db.models import SupportThread

MODERATORS = ChannelBinding(type="verify", chat_id=-100200)


def _awaiting_session() -> SessionDocument:
    session = SessionDocument.default()
    session.support.status = "awaiting_message"
    session.phone_number = "+77010000000"
    return session


class SupportHelpersTests(unittest.TestCase):
    def test_thread_ids_share_prefix(self) -> None:
        thread_id, short_id = support_flow.create_thread_ids()
        self.assertEqual(len(thread_id), 16)
        self.assertEqual(short_id, thread_id[:6].upper())

    def test_sender_description_lists_known_fields(self) -> None:
        user = SimpleNamespace(id=42, username="rider", first_name="Aru", last_name="K")
        self.assertEqual(
            support_flow.describe_sender(user, "+7701"),
            "@rider, Aru K, ID 42, тел. +7701",
        )
        self.assertEqual(support_flow.describe_sender(None, None), "неизвестный пользователь")


class SupportPromptTests(unittest.IsolatedAsyncioTestCase):
    async def test_button_starts_waiting_for_message(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.support.last_thread_id = "old"

        await support_flow.handle_support_action(build_callback(bot, SUPPORT_ACTION), session)

        self.assertEqual(session.support.status, "awaiting_message")
        self.assertIsNone(session.support.last_thread_id)
        self.assertEqual(sent_texts(bot), [SUPPORT_PROMPT])
        self.assertEqual(session.ephemeral_messages, [1000])

    def test_filter_follows_support_status(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        message = build_text_message(bot, "помогите")

        self.assertFalse(support_flow.awaiting_support_message(message, session))
        session.support.status = "awaiting_message"
        self.assertTrue(support_flow.awaiting_support_message(message, session))
        self.assertFalse(support_flow.awaiting_support_message(message, None))


class SupportMessageTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine = create_sqlite_engine()
        await create_schema(self.engine)
        self.factory = make_factory(self.engine)
        self.bot = build_bot()
        self.bot.copy_message.return_value = SimpleNamespace(message_id=555)

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def _send(self, session: SessionDocument, text: str = "Не приходит заказ", binding=MODERATORS):
        message = build_text_message(self.bot, text)
        with patch.object(support_flow, "get_channel_binding", AsyncMock(return_value=binding)):
            async with self.factory() as db:
                await support_flow.handle_support_message(message, session, None, db)
                await db.commit()
        return message

    async def _threads(self) -> list[SupportThread]:
        async with self.factory() as db:
            return list(await db.scalars(select(SupportThread)))

    async def test_message_is_forwarded_and_thread_saved(self) -> None:
        session = _awaiting_session()

        await self._send(session)

        threads = await self._threads()
        self.assertEqual(len(threads), 1)
        thread = threads[0]
        self.assertEqual(thread.user_chat_id, 42)
        self.assertEqual(thread.user_message_id, 500)
        self.assertEqual(thread.moderator_chat_id, MODERATORS.chat_id)
        self.assertEqual(thread.moderator_message_id, 555)
        self.assertEqual(thread.status, "open")

        self.assertEqual(session.support.status, "idle")
        self.assertEqual(session.support.last_thread_id, thread.id)
        self.assertEqual(session.support.last_thread_short_id, thread.short_id)

        header = self.bot.send_message.await_args_list[0].kwargs
        self.assertEqual(header["chat_id"], MODERATORS.chat_id)
        self.assertIn(f"№{thread.short_id}", header["text"])
        self.assertIn("тел. +77010000000", header["text"])
        self.bot.copy_message.assert_awaited_once_with(
            chat_id=MODERATORS.chat_id, from_chat_id=42, message_id=500
        )
        self.assertIn(f"Номер обращения: {thread.short_id}.", sent_texts(self.bot)[-1])

    async def test_missing_channel_returns_to_menu(self) -> None:
        session = _awaiting_session()

        await self._send(session, binding=None)

        self.assertEqual(await self._threads(), [])
        self.assertEqual(session.support.status, "idle")
        self.bot.copy_message.assert_not_awaited()
        self.assertTrue(sent_texts(self.bot)[-1].startswith(SUPPORT_UNAVAILABLE))

    async def test_telegram_failure_keeps_waiting_and_drops_thread(self) -> None:
        session = _awaiting_session()
        self.bot.copy_message.side_effect = TelegramBadRequest(
            method=SimpleNamespace(), message="Bad Request: message to copy not found"
        )

        message = await self._send(session)

        self.assertEqual(await self._threads(), [])
        self.assertEqual(session.support.status, "awaiting_message")
        message.answer.assert_awaited_once_with(SUPPORT_RETRY)

    async def test_command_cancels_request_and_passes_through(self) -> None:
        session = _awaiting_session()
        message = build_text_message(self.bot, "/start")

        with self.assertRaises(SkipHandler):
            await support_flow.handle_support_message(message, session)

        self.assertEqual(session.support.status, "idle")
        self.bot.send_message.assert_not_awaited()
        self.bot.copy_message.assert_not_awaited()

    async def test_executor_gets_notice_and_executor_menu(self) -> None:
        session = _awaiting_session()
        session.executor.role = ExecutorRole.COURIER

        await self._send(session)

        texts = sent_texts(self.bot)
        self.assertTrue(texts[-2].startswith("✅ Обращение отправлено модератору."))
        self.assertIn(EXECUTOR_MENU_STEP_ID, session.ui.steps)

    async def test_without_database_message_is_still_forwarded(self) -> None:
        session = _awaiting_session()
        message = build_text_message(self.bot, "Не приходит заказ")

        with patch.object(support_flow, "get_channel_binding", AsyncMock(return_value=MODERATORS)):
            await support_flow.handle_support_message(message, session, None, None)

        self.bot.copy_message.assert_awaited_once()
        self.assertEqual(session.support.status, "idle")
        self.assertIsNone(session.support.last_thread_id)
        self.assertTrue(sent_texts(self.bot)[-1].startswith(SUPPORT_SENT))


if __name__ == "__main__":
    unittest.main()
