import unittest
from types import SimpleNamespace

import pytest
from aiogram.exceptions import TelegramForbiddenError
from sqlalchemy import select

from db_helpers import create_schema, create_sqlite_engine, make_factory, session_factory_for
from flow_helpers import build_auth, build_bot, build_callback
from freedom_bot.bot.channels import clear_binding_cache
from freedom_bot.bot.moderation.decisions import handle_moderation_decision
from freedom_bot.bot.moderation.payments import apply_payment_decision
from freedom_bot.bot.moderation.queue import (
    build_callback_data,
    build_decision_keyboard,
    build_decision_suffix,
    parse_callback_data,
)
from freedom_bot.bot.moderation.verification import apply_verification_decision
from freedom_bot.bot.roles import ExecutorRole, UserRole
from freedom_bot.bot.session.document import ModerationRef, SessionDocument
from freedom_bot.bot.session.store import SessionKey, SessionStore
from freedom_bot.db.models import (
    PaymentStatus,
    Subscription,
    SubscriptionPayment,
    SubscriptionStatus,
    User,
    UserStatus,
    Verification,
    VerificationStatus,
)


@pytest.mark.parametrize(
    ("data", "approved", "reason_index"),
    [
        ("mod:verify:7:abc:approve", True, None),
        ("mod:payment:9:abc:reject-1", False, 1),
        ("mod:verify:7:abc:reject", False, None),
    ],
)
def test_parse_callback_data(data, approved, reason_index) -> None:
    parsed = parse_callback_data(data)

    assert parsed is not None
    assert parsed.approved is approved
    assert parsed.reason_index == reason_index
    assert parsed.token == "abc"


@pytest.mark.parametrize(
    "data",
    [None, "", "mod:verify:x:abc:approve", "mod:orders:7:abc:approve", "mod:verify:7:abc:maybe", "sub:cancel"],
)
def test_parse_callback_data_rejects_garbage(data) -> None:
    assert parse_callback_data(data) is None


def test_decision_keyboard_round_trips_reasons() -> None:
    keyboard = build_decision_keyboard("verify", 7, "tok", ["Нечитабельно", "Не подходит"])
    payloads = [row[0].callback_data for row in keyboard.inline_keyboard]

    assert payloads[0] == build_callback_data("verify", 7, "tok", "approve")
    assert parse_callback_data(payloads[2]).reason_index == 1
    assert all(len(payload.encode()) <= 64 for payload in payloads)


def test_decision_suffix_names_moderator() -> None:
    moderator = SimpleNamespace(id=5, username=None, first_name="Ера", last_name=None)

    assert "Ера (ID 5)" in build_decision_suffix(True, moderator, None)
    assert "Причина: Не подходит" in build_decision_suffix(False, moderator, "Не подходит")


class ModerationDecisionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        clear_binding_cache()
        self.engine = create_sqlite_engine()
        await create_schema(self.engine)
        self.factory = make_factory(self.engine)
        self.store = SessionStore(session_factory=session_factory_for(self.engine))
        self.bot = build_bot()

    async def asyncTearDown(self) -> None:
        clear_binding_cache()
        await self.engine.dispose()

    async def _seed_verification(self, db) -> Verification:
        user = User(telegram_id=42, role="driver", status=UserStatus.ACTIVE_EXECUTOR)
        db.add(user)
        await db.flush()
        record = Verification(
            user_id=user.id,
            role="driver",
            status=VerificationStatus.PENDING,
            photos_count=2,
            applicant_chat_id=42,
            moderation_token="tok",
        )
        db.add(record)
        await db.flush()

        document = SessionDocument.default()
        document.executor.role = ExecutorRole.DRIVER
        verification = document.executor.verification[ExecutorRole.DRIVER]
        verification.status = "submitted"
        verification.moderation = ModerationRef(application_id=record.id, token="tok")
        await self.store.save(db, SessionKey("chat", "42"), document)
        return record

    async def test_approval_marks_user_verified_and_resets_session(self) -> None:
        async with self.factory() as db:
            record = await self._seed_verification(db)
            await apply_verification_decision(
                self.bot, db, record, approved=True, reason=None, store=self.store
            )
            await db.commit()

            user = await db.scalar(select(User).where(User.telegram_id == 42))
            document = await self.store.load(db, SessionKey("chat", "42"))

        self.assertEqual(record.status, VerificationStatus.ACTIVE)
        self.assertIsNotNone(record.decided_at)
        self.assertTrue(user.is_verified)
        self.assertEqual(document.executor.verification[ExecutorRole.DRIVER].status, "idle")
        self.assertEqual(self.bot.send_message.await_args.kwargs["chat_id"], 42)
        self.assertIn("Документы подтверждены", self.bot.send_message.await_args.kwargs["text"])

    async def test_rejection_keeps_user_unverified(self) -> None:
        async with self.factory() as db:
            record = await self._seed_verification(db)
            await apply_verification_decision(
                self.bot, db, record, approved=False, reason="Не подходит", store=self.store
            )
            await db.commit()
            user = await db.scalar(select(User).where(User.telegram_id == 42))

        self.assertEqual(record.status, VerificationStatus.REJECTED)
        self.assertFalse(user.is_verified)
        self.assertIn("Причина: Не подходит", self.bot.send_message.await_args.kwargs["text"])

    async def test_blocked_applicant_is_flagged(self) -> None:
        self.bot.send_message.side_effect = TelegramForbiddenError(
            SimpleNamespace(chat_id=42), "Forbidden: bot was blocked by the user"
        )
        async with self.factory() as db:
            record = await self._seed_verification(db)
            await apply_verification_decision(
                self.bot, db, record, approved=True, reason=None, store=self.store
            )
            await db.commit()
            user = await db.scalar(
                select(User)
                .where(User.telegram_id == 42)
                .execution_options(populate_existing=True)
            )

        self.assertTrue(user.is_blocked)

    async def test_payment_approval_activates_subscription(self) -> None:
        async with self.factory() as db:
            user = User(telegram_id=42, role="courier", status=UserStatus.ACTIVE_EXECUTOR)
            db.add(user)
            await db.flush()
            payment = SubscriptionPayment(
                user_id=user.id,
                period_id="15",
                days=15,
                amount=3000,
                currency="KZT",
                status=PaymentStatus.PENDING,
                applicant_chat_id=42,
                moderation_token="tok",
            )
            db.add(payment)
            await db.flush()
            document = SessionDocument.default()
            document.executor.role = ExecutorRole.COURIER
            document.executor.subscription.status = "pending_moderation"
            document.executor.subscription.pending_payment_id = payment.id
            await self.store.save(db, SessionKey("chat", "42"), document)

            await apply_payment_decision(self.bot, db, payment, approved=True, reason=None, store=self.store)
            await db.commit()

            subscription = await db.scalar(select(Subscription).where(Subscription.user_id == user.id))
            document = await self.store.load(db, SessionKey("chat", "42"))

        self.assertEqual(payment.status, PaymentStatus.APPROVED)
        self.assertEqual(subscription.status, SubscriptionStatus.ACTIVE)
        self.assertIsNotNone(subscription.next_billing_at)
        self.assertEqual(document.executor.subscription.status, "idle")
        self.assertIsNone(document.executor.subscription.pending_payment_id)

    async def test_router_rejects_non_moderators(self) -> None:
        stale_moderator = SimpleNamespace(is_moderator=True, stale=True)

        for auth in (None, build_auth(), stale_moderator):
            callback = build_callback(self.bot, "mod:verify:1:tok:approve")
            await handle_moderation_decision(callback, auth=auth, db=SimpleNamespace())
            callback.answer.assert_awaited_once_with("Недостаточно прав для модерации.", show_alert=True)

    async def test_router_applies_decision_and_marks_card(self) -> None:
        async with self.factory() as db:
            record = await self._seed_verification(db)
            await db.commit()

        callback = build_callback(self.bot, f"mod:verify:{record.id}:tok:reject-2", chat_id=-100500)
        callback.from_user = SimpleNamespace(id=5, username="moder", first_name=None, last_name=None)
        moderator = build_auth(role=UserRole.MODERATOR, is_moderator=True, telegram_id=5)

        async with self.factory() as db:
            await handle_moderation_decision(callback, auth=moderator, db=db)
            await db.commit()
            stored = await db.get(Verification, record.id)

        self.assertEqual(stored.status, VerificationStatus.REJECTED)
        callback.answer.assert_awaited_with("Решение сохранено.")
        edited = callback.message.edit_text.await_args
        self.assertIn("Отклонено модератором @moder", edited.args[0])
        self.assertIn("Не подходит", edited.args[0])
        self.assertIsNone(edited.kwargs["reply_markup"])

    async def test_router_refuses_stale_token_and_decided_items(self) -> None:
        async with self.factory() as db:
            record = await self._seed_verification(db)
            await db.commit()
        moderator = build_auth(role=UserRole.MODERATOR, is_moderator=True, telegram_id=5)

        stale = build_callback(self.bot, f"mod:verify:{record.id}:old:approve")
        async with self.factory() as db:
            await handle_moderation_decision(stale, auth=moderator, db=db)
        stale.answer.assert_awaited_once_with("Кнопка устарела.", show_alert=True)

        first = build_callback(self.bot, f"mod:verify:{record.id}:tok:approve")
        second = build_callback(self.bot, f"mod:verify:{record.id}:tok:approve")
        async with self.factory() as db:
            await handle_moderation_decision(first, auth=moderator, db=db)
            await db.commit()
        async with self.factory() as db:
            await handle_moderation_decision(second, auth=moderator, db=db)
        second.answer.assert_awaited_once_with("Заявка уже обработана.", show_alert=True)


if __name__ == "__main__":
    unittest.main()
