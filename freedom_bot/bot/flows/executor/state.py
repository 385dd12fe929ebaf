from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.document import (
    ExecutorFlowState,
    ModerationRef,
    SubscriptionState,
    UploadedPhoto,
    VerificationRoleState,
)
from freedom_bot.core.config import settings


@dataclass(frozen=True)
class PhotoDecision:
    accepted: bool
    duplicate: bool
    uploaded: int
    required: int

    @property
    def complete(self) -> bool:
        return self.uploaded >= self.required


def _configured_required_photos() -> int:
    return settings.required_verification_photos


def begin_role_switch(state: ExecutorFlowState) -> None:
    """Сбрасывает выбор роли и проверку текущей роли. Проверка другой роли не трогается."""
    if state.role is not None:
        reset_verification(state.verification[state.role])
    state.role = None
    state.awaiting_role_selection = True
    state.role_selection_stage = "executorKind"


def apply_executor_role(state: ExecutorFlowState, role: ExecutorRole, *, city_required: bool) -> None:
    state.role = role
    state.verification.setdefault(role, VerificationRoleState())
    if city_required:
        state.awaiting_role_selection = True
        state.role_selection_stage = "city"
    else:
        state.awaiting_role_selection = False
        state.role_selection_stage = None


def finish_role_selection(state: ExecutorFlowState) -> None:
    state.awaiting_role_selection = False
    state.role_selection_stage = None


def reset_verification(verification: VerificationRoleState) -> None:
    verification.status = "idle"
    verification.required_photos = _configured_required_photos()
    verification.uploaded_photos = []
    verification.submitted_at = None
    verification.moderation = None
    verification.last_reminder_at = None


def start_collecting(verification: VerificationRoleState) -> bool:
    if verification.status == "submitted":
        return False
    if verification.status == "collecting":
        return True
    reset_verification(verification)
    verification.status = "collecting"
    return True


def _is_duplicate(existing: Iterable[UploadedPhoto], photo: UploadedPhoto) -> bool:
    for item in existing:
        if photo.file_unique_id and item.file_unique_id == photo.file_unique_id:
            return True
        if item.message_id == photo.message_id:
            return True
    return False


def add_uploaded_photo(verification: VerificationRoleState, photo: UploadedPhoto) -> PhotoDecision:
    required = verification.required_photos
    photos = verification.uploaded_photos
    if _is_duplicate(photos, photo):
        return PhotoDecision(accepted=False, duplicate=True, uploaded=len(photos), required=required)
    if len(photos) >= required:
        return PhotoDecision(accepted=False, duplicate=False, uploaded=len(photos), required=required)
    photos.append(photo)
    # Альбомы могут приходить не по порядку.
    photos.sort(key=lambda item: item.message_id)
    return PhotoDecision(accepted=True, duplicate=False, uploaded=len(photos), required=required)


def is_collection_complete(verification: VerificationRoleState) -> bool:
    return len(verification.uploaded_photos) >= verification.required_photos


def mark_submitted(
    verification: VerificationRoleState,
    *,
    moderation: ModerationRef,
    forwarded_message_ids: Iterable[int],
    submitted_at: datetime,
) -> None:
    forwarded = set(forwarded_message_ids)
    verification.status = "submitted"
    verification.submitted_at = submitted_at
    verification.moderation = moderation
    verification.last_reminder_at = None
    verification.uploaded_photos = [
        photo for photo in verification.uploaded_photos if photo.message_id not in forwarded
    ]


def can_start_subscription(verification: VerificationRoleState, *, verified: bool) -> bool:
    return verified or verification.status == "submitted"


def begin_period_selection(subscription: SubscriptionState) -> None:
    subscription.status = "selecting_period"
    subscription.selected_period_id = None
    subscription.pending_payment_id = None


def select_period(subscription: SubscriptionState, period_id: str) -> None:
    subscription.status = "awaiting_receipt"
    subscription.selected_period_id = period_id


def mark_receipt_submitted(
    subscription: SubscriptionState,
    *,
    payment_id: int,
    moderation_chat_id: int | None,
    moderation_message_id: int | None,
) -> None:
    subscription.status = "pending_moderation"
    subscription.pending_payment_id = payment_id
    subscription.moderation_chat_id = moderation_chat_id
    subscription.moderation_message_id = moderation_message_id


def record_invite(subscription: SubscriptionState, invite_link: str, issued_at: datetime) -> None:
    subscription.last_invite_link = invite_link
    subscription.last_issued_at = issued_at


def reset_subscription(subscription: SubscriptionState) -> None:
    subscription.status = "idle"
    subscription.selected_period_id = None
    subscription.pending_payment_id = None
    subscription.moderation_chat_id = None
    subscription.moderation_message_id = None
    subscription.last_reminder_at = None
