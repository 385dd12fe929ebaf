import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from flow_helpers import build_auth, build_bot, build_callback, build_text_message, build_user, sent_texts

from freedom_bot.bot.flows.client.menu import CLIENT_MENU_ACTION
from freedom_bot.bot.flows.common import phone as phone_flow
from freedom_bot.bot.flows.executor import role_select
from freedom_bot.bot.flows.executor.copy import (
    CITY_PICK_TEXT,
    EXECUTOR_KIND_TEXT,
    MODERATOR_ROLE_LOCKED,
    ROLE_PICK_TEXT,
)
from freedom_bot.bot.handlers import start
from freedom_bot.bot.roles import ExecutorRole, UserRole
from freedom_bot.bot.session.document import SessionDocument, TrackedStep, UploadedPhoto
from freedom_bot.bot.session.middleware import SessionControl


class StartCommandTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_resets_session_and_shows_role_pick(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.ui.steps["executor:menu"] = TrackedStep(chat_id=42, message_id=9, cleanup=False)
        control = SessionControl()
        message = build_text_message(bot, "/start")

        await start.handle_start(message, session, control, build_auth(role=UserRole.CLIENT))

        self.assertTrue(control.clear_requested)
        bot.delete_message.assert_awaited_once_with(chat_id=42, message_id=9)
        self.assertEqual(sent_texts(bot), [ROLE_PICK_TEXT])
        self.assertEqual(session.executor.role_selection_stage, "role")

    async def test_home_for_executor_is_executor_menu(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.executor.role = ExecutorRole.COURIER

        await start.show_home(bot, 42, session, build_auth(role=UserRole.COURIER))

        self.assertIn("Меню курьера", sent_texts(bot)[0])

    async def test_start_is_private_only(self) -> None:
        bot = build_bot()
        message = build_text_message(bot, "/start", chat_id=-100)
        message.chat.type = "group"

        await start.handle_start(message, SessionDocument.default(), SessionControl(), None)

        message.answer.assert_awaited_once()
        bot.send_message.assert_not_awaited()


class RoleSelectionTests(unittest.IsolatedAsyncioTestCase):
    async def test_executor_without_city_goes_through_city_pick(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        callback = build_callback(bot, f"{role_select.ROLE_KIND_PREFIX}driver")

        await role_select.handle_executor_kind(callback, session, build_auth(role=UserRole.CLIENT), None)

        self.assertEqual(session.executor.role, ExecutorRole.DRIVER)
        self.assertEqual(session.executor.role_selection_stage, "city")
        self.assertEqual(session.ui.pending_city_action, "executorMenu")
        self.assertEqual(sent_texts(bot), [CITY_PICK_TEXT])

        city_callback = build_callback(bot, f"{role_select.CITY_PREFIX}almaty")
        await role_select.handle_city_pick(city_callback, session, build_auth(role=UserRole.DRIVER), None)

        self.assertEqual(session.city, "almaty")
        self.assertFalse(session.executor.awaiting_role_selection)
        self.assertIsNone(session.ui.pending_city_action)
        self.assertIn("Меню водителя такси", sent_texts(bot)[-1])

    async def test_unknown_city_is_refused(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        callback = build_callback(bot, f"{role_select.CITY_PREFIX}paris")

        await role_select.handle_city_pick(callback, session, None, None)

        self.assertIsNone(session.city)
        self.assertTrue(callback.answer.await_args.kwargs["show_alert"])

    async def test_client_with_city_gets_menu_and_phone_request(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.city = "astana"
        session.executor.role = ExecutorRole.COURIER
        callback = build_callback(bot, role_select.ROLE_CLIENT_ACTION)

        await role_select.handle_client_role(callback, session, build_auth(role=UserRole.COURIER), None)

        self.assertIsNone(session.executor.role)
        self.assertTrue(session.awaiting_phone)
        texts = sent_texts(bot)
        self.assertIn("Меню клиента", texts[0])
        self.assertEqual(texts[1], phone_flow.PHONE_REQUEST_TEXT)
        self.assertIn(CLIENT_MENU_ACTION, session.ui.home_actions)

    async def test_role_switch_resets_submitted_verification(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.executor.role = ExecutorRole.COURIER
        session.executor.verification[ExecutorRole.COURIER].status = "submitted"
        session.ui.steps["executor:menu"] = TrackedStep(chat_id=42, message_id=9, cleanup=False)
        callback = build_callback(bot, role_select.EXECUTOR_ROLE_SWITCH_ACTION)

        await role_select.handle_role_switch(callback, session, build_auth())

        self.assertIsNone(session.executor.role)
        self.assertEqual(session.executor.role_selection_stage, "executorKind")
        self.assertEqual(session.executor.verification[ExecutorRole.COURIER].status, "idle")
        self.assertEqual(list(session.ui.steps), [role_select.ROLE_STEP_ID])
        self.assertEqual(sent_texts(bot), [EXECUTOR_KIND_TEXT])
        markup = bot.send_message.await_args.kwargs["reply_markup"]
        actions = [row[0].callback_data for row in markup.inline_keyboard]
        self.assertIn(role_select.ROLE_CLIENT_ACTION, actions)

    async def test_role_switch_drops_unfinished_collection(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        session.executor.role = ExecutorRole.DRIVER
        verification = session.executor.verification[ExecutorRole.DRIVER]
        verification.status = "collecting"
        verification.uploaded_photos = [UploadedPhoto(file_id="f", file_unique_id="u", message_id=1)]

        await role_select.handle_role_command(build_text_message(bot, "/role"), session, build_auth())

        self.assertEqual(verification.status, "idle")
        self.assertEqual(verification.uploaded_photos, [])

    async def test_moderator_cannot_switch_role(self) -> None:
        bot = build_bot()
        session = SessionDocument.default()
        message = build_text_message(bot, "/role")

        await role_select.handle_role_command(
            message, session, build_auth(role=UserRole.MODERATOR, is_moderator=True)
        )

        message.answer.assert_awaited_once_with(MODERATOR_ROLE_LOCKED)
        self.assertFalse(session.executor.awaiting_role_selection)


class PhoneTests(unittest.IsolatedAsyncioTestCase):
    def _contact_message(self, contact_user_id: int | None) -> SimpleNamespace:
        return SimpleNamespace(
            chat=SimpleNamespace(id=42, type="private"),
            from_user=build_user(42),
            contact=SimpleNamespace(phone_number="7 (701) 123-45-67", user_id=contact_user_id),
            answer=AsyncMock(),
        )

    def test_phone_normalization(self) -> None:
        self.assertEqual(phone_flow.normalize_phone("7 (701) 123-45-67"), "+77011234567")
        self.assertEqual(phone_flow.normalize_phone("+7 701 123 45 67"), "+77011234567")

    async def test_own_contact_is_saved(self) -> None:
        session = SessionDocument.default()
        session.awaiting_phone = True
        message = self._contact_message(42)

        await phone_flow.handle_contact(message, session, None)

        self.assertEqual(session.phone_number, "+77011234567")
        self.assertFalse(session.awaiting_phone)
        self.assertEqual(message.answer.await_args.args[0], phone_flow.PHONE_SAVED_TEXT)

    async def test_foreign_contact_is_refused(self) -> None:
        session = SessionDocument.default()
        session.awaiting_phone = True
        message = self._contact_message(777)

        await phone_flow.handle_contact(message, session, None)

        self.assertIsNone(session.phone_number)
        self.assertTrue(session.awaiting_phone)
        self.assertEqual(message.answer.await_args.args[0], phone_flow.PHONE_FOREIGN_CONTACT_TEXT)


if __name__ == "__main__":
    unittest.main()
