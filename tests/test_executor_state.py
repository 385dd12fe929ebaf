import unittest
from datetime import datetime, timezone

from freedom_bot.bot.flows.executor.state import (
    add_uploaded_photo,
    apply_executor_role,
    begin_period_selection,
    begin_role_switch,
    can_start_subscription,
    is_collection_complete,
    mark_receipt_submitted,
    mark_submitted,
    reset_subscription,
    select_period,
    start_collecting,
)
from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.document import (
    ExecutorFlowState,
    ModerationRef,
    SubscriptionState,
    UploadedPhoto,
    VerificationRoleState,
)


def _photo(message_id: int, unique_id: str) -> UploadedPhoto:
    return UploadedPhoto(file_id=f"file-{unique_id}", file_unique_id=unique_id, message_id=message_id)


class PhotoCollectionTests(unittest.TestCase):
    def _collecting(self, required: int = 2) -> VerificationRoleState:
        verification = VerificationRoleState(required_photos=required)
        self.assertTrue(start_collecting(verification))
        verification.required_photos = required
        return verification

    def test_duplicate_unique_id_is_not_counted(self) -> None:
        verification = self._collecting()
        add_uploaded_photo(verification, _photo(101, "A"))

        decision = add_uploaded_photo(verification, _photo(105, "A"))

        self.assertTrue(decision.duplicate)
        self.assertFalse(decision.accepted)
        self.assertEqual(len(verification.uploaded_photos), 1)

    def test_duplicate_message_id_is_not_counted(self) -> None:
        verification = self._collecting()
        add_uploaded_photo(verification, _photo(101, "A"))

        decision = add_uploaded_photo(verification, _photo(101, "other"))

        self.assertTrue(decision.duplicate)
        self.assertEqual(len(verification.uploaded_photos), 1)

    def test_photos_are_ordered_by_message_id(self) -> None:
        verification = self._collecting(required=3)
        for photo in (_photo(103, "C"), _photo(101, "A"), _photo(102, "B")):
            add_uploaded_photo(verification, photo)

        self.assertEqual([photo.message_id for photo in verification.uploaded_photos], [101, 102, 103])

    def test_completion_gate(self) -> None:
        verification = self._collecting()

        first = add_uploaded_photo(verification, _photo(101, "A"))
        self.assertFalse(first.complete)
        self.assertFalse(is_collection_complete(verification))

        second = add_uploaded_photo(verification, _photo(100, "B"))
        self.assertTrue(second.complete)
        self.assertTrue(is_collection_complete(verification))
        self.assertEqual([photo.file_unique_id for photo in verification.uploaded_photos], ["B", "A"])

    def test_extra_photos_beyond_required_are_ignored(self) -> None:
        verification = self._collecting()
        add_uploaded_photo(verification, _photo(1, "A"))
        add_uploaded_photo(verification, _photo(2, "B"))

        decision = add_uploaded_photo(verification, _photo(3, "C"))

        self.assertFalse(decision.accepted)
        self.assertFalse(decision.duplicate)
        self.assertEqual(len(verification.uploaded_photos), 2)

    def test_start_collecting_refuses_submitted_application(self) -> None:
        verification = VerificationRoleState(status="submitted")

        self.assertFalse(start_collecting(verification))
        self.assertEqual(verification.status, "submitted")

    def test_mark_submitted_keeps_photos_that_failed_to_forward(self) -> None:
        verification = self._collecting()
        add_uploaded_photo(verification, _photo(1, "A"))
        add_uploaded_photo(verification, _photo(2, "B"))
        submitted_at = datetime(2026, 1, 1, tzinfo=timezone.utc)

        mark_submitted(
            verification,
            moderation=ModerationRef(application_id=7, chat_id=-100, message_id=55, token="t"),
            forwarded_message_ids=[1],
            submitted_at=submitted_at,
        )

        self.assertEqual(verification.status, "submitted")
        self.assertEqual(verification.submitted_at, submitted_at)
        self.assertEqual([photo.message_id for photo in verification.uploaded_photos], [2])
        self.assertEqual(verification.moderation.application_id, 7)


class RoleSwitchTests(unittest.TestCase):
    def test_switch_resets_collecting_role_and_keeps_other_role(self) -> None:
        state = ExecutorFlowState(role=ExecutorRole.COURIER)
        courier = state.verification[ExecutorRole.COURIER]
        start_collecting(courier)
        add_uploaded_photo(courier, _photo(1, "A"))
        state.verification[ExecutorRole.DRIVER].status = "submitted"

        begin_role_switch(state)

        self.assertIsNone(state.role)
        self.assertTrue(state.awaiting_role_selection)
        self.assertEqual(state.role_selection_stage, "executorKind")
        self.assertEqual(state.verification[ExecutorRole.COURIER].status, "idle")
        self.assertEqual(state.verification[ExecutorRole.COURIER].uploaded_photos, [])
        self.assertEqual(state.verification[ExecutorRole.DRIVER].status, "submitted")

    def test_switch_resets_submitted_application_of_current_role(self) -> None:
        state = ExecutorFlowState(role=ExecutorRole.DRIVER)
        driver = state.verification[ExecutorRole.DRIVER]
        driver.status = "submitted"
        driver.moderation = ModerationRef(application_id=5, chat_id=-100, message_id=7, token="t")
        state.verification[ExecutorRole.COURIER].status = "submitted"

        begin_role_switch(state)

        self.assertEqual(driver.status, "idle")
        self.assertIsNone(driver.moderation)
        self.assertIsNone(driver.submitted_at)
        self.assertEqual(state.verification[ExecutorRole.COURIER].status, "submitted")

    def test_apply_role_requires_city_when_missing(self) -> None:
        state = ExecutorFlowState()

        apply_executor_role(state, ExecutorRole.DRIVER, city_required=True)

        self.assertEqual(state.role, ExecutorRole.DRIVER)
        self.assertEqual(state.role_selection_stage, "city")
        self.assertTrue(state.awaiting_role_selection)

        apply_executor_role(state, ExecutorRole.COURIER, city_required=False)

        self.assertEqual(state.role, ExecutorRole.COURIER)
        self.assertFalse(state.awaiting_role_selection)
        self.assertIsNone(state.role_selection_stage)


class SubscriptionStateTests(unittest.TestCase):
    def test_subscription_gate(self) -> None:
        self.assertFalse(can_start_subscription(VerificationRoleState(status="idle"), verified=False))
        self.assertFalse(can_start_subscription(VerificationRoleState(status="collecting"), verified=False))
        self.assertTrue(can_start_subscription(VerificationRoleState(status="submitted"), verified=False))
        self.assertTrue(can_start_subscription(VerificationRoleState(status="idle"), verified=True))

    def test_payment_cycle(self) -> None:
        subscription = SubscriptionState()

        begin_period_selection(subscription)
        self.assertEqual(subscription.status, "selecting_period")

        select_period(subscription, "15")
        self.assertEqual(subscription.status, "awaiting_receipt")
        self.assertEqual(subscription.selected_period_id, "15")

        mark_receipt_submitted(subscription, payment_id=9, moderation_chat_id=-1, moderation_message_id=3)
        self.assertEqual(subscription.status, "pending_moderation")
        self.assertEqual(subscription.pending_payment_id, 9)

        subscription.last_invite_link = "https://t.me/+abc"
        reset_subscription(subscription)
        self.assertEqual(subscription.status, "idle")
        self.assertIsNone(subscription.selected_period_id)
        self.assertIsNone(subscription.pending_payment_id)
        self.assertEqual(subscription.last_invite_link, "https://t.me/+abc")


if __name__ == "__main__":
    unittest.main()
