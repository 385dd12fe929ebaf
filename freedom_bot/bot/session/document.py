from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from freedom_bot.bot.roles import EXECUTOR_ROLES, ExecutorRole
from freedom_bot.core.config import DEFAULT_VERIFICATION_PHOTO_COUNT, settings

logger = logging.getLogger(__name__)

VerificationStatus = Literal["idle", "collecting", "submitted"]
SubscriptionFlowStatus = Literal["idle", "selecting_period", "awaiting_receipt", "pending_moderation"]
RoleSelectionStage = Literal["role", "executorKind", "city"]
OrderDraftStage = Literal[
    "idle",
    "collecting_pickup",
    "collecting_dropoff",
    "awaiting_confirmation",
    "creating_order",
]
PendingCityAction = Literal["clientMenu", "executorMenu"]
SupportStatus = Literal["idle", "awaiting_message"]

_PERIOD_STATUSES = ("awaiting_receipt", "pending_moderation")
_ORDER_STAGES = ("idle", "collecting_pickup", "collecting_dropoff", "awaiting_confirmation", "creating_order")


def _required_photos() -> int:
    required = settings.required_verification_photos
    return required if required > 0 else DEFAULT_VERIFICATION_PHOTO_COUNT


class _Document(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Вложенные состояния, которые в старых документах могли быть записаны как null.
    backfill_on_null: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def _drop_null_substates(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not cls.backfill_on_null:
            return data
        return {
            key: value
            for key, value in data.items()
            if not (value is None and key in cls.backfill_on_null)
        }


class UploadedPhoto(_Document):
    file_id: str
    message_id: int
    file_unique_id: str | None = None


class ModerationRef(_Document):
    application_id: int | str | None = None
    chat_id: int | None = None
    message_id: int | None = None
    token: str | None = None


class VerificationRoleState(_Document):
    backfill_on_null: ClassVar[tuple[str, ...]] = ("uploaded_photos", "required_photos")

    status: VerificationStatus = "idle"
    required_photos: int = Field(default_factory=_required_photos)
    uploaded_photos: list[UploadedPhoto] = Field(default_factory=list)
    submitted_at: datetime | None = None
    moderation: ModerationRef | None = None
    last_reminder_at: datetime | None = None

    @field_validator("required_photos", mode="before")
    @classmethod
    def _positive_required_photos(cls, value: Any) -> int:
        try:
            required = int(value)
        except (TypeError, ValueError):
            return _required_photos()
        return required if required > 0 else _required_photos()

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: Any) -> str:
        if value in ("idle", "collecting", "submitted"):
            return value
        return "idle"


class SubscriptionState(_Document):
    status: SubscriptionFlowStatus = "idle"
    selected_period_id: str | None = None
    pending_payment_id: int | None = None
    moderation_chat_id: int | None = None
    moderation_message_id: int | None = None
    last_invite_link: str | None = None
    last_issued_at: datetime | None = None
    last_reminder_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: Any) -> str:
        if value in ("idle", "selecting_period", "awaiting_receipt", "pending_moderation"):
            return value
        return "idle"

    @model_validator(mode="after")
    def _period_only_while_paying(self) -> "SubscriptionState":
        if self.status not in _PERIOD_STATUSES:
            self.selected_period_id = None
        return self


def _default_verification() -> dict[ExecutorRole, VerificationRoleState]:
    return {role: VerificationRoleState() for role in EXECUTOR_ROLES}


class ExecutorFlowState(_Document):
    backfill_on_null: ClassVar[tuple[str, ...]] = ("verification", "subscription")

    role: ExecutorRole | None = None
    verification: dict[ExecutorRole, VerificationRoleState] = Field(
        default_factory=_default_verification
    )
    subscription: SubscriptionState = Field(default_factory=SubscriptionState)
    awaiting_role_selection: bool | None = None
    role_selection_stage: RoleSelectionStage | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _drop_unknown_role(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        try:
            return ExecutorRole(value)
        except ValueError:
            return None

    @field_validator("verification", mode="before")
    @classmethod
    def _known_roles_only(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        known = {role.value for role in EXECUTOR_ROLES}
        return {
            key: item for key, item in value.items() if key in known and item is not None
        }

    @model_validator(mode="after")
    def _fill_missing_roles(self) -> "ExecutorFlowState":
        for role in EXECUTOR_ROLES:
            if role not in self.verification:
                self.verification[role] = VerificationRoleState()
        return self


class OrderLocation(_Document):
    address: str


def _location_or_none(value: Any) -> Any:
    if isinstance(value, OrderLocation):
        return value
    if isinstance(value, dict) and isinstance(value.get("address"), str) and value["address"].strip():
        return value
    return None


class OrderDraftState(_Document):
    stage: OrderDraftStage = "idle"
    pickup: OrderLocation | None = None
    dropoff: OrderLocation | None = None

    @field_validator("stage", mode="before")
    @classmethod
    def _known_stage(cls, value: Any) -> str:
        if value in _ORDER_STAGES:
            return value
        return "idle"

    @field_validator("pickup", "dropoff", mode="before")
    @classmethod
    def _valid_location(cls, value: Any) -> Any:
        return _location_or_none(value)

    @model_validator(mode="after")
    def _stage_matches_addresses(self) -> "OrderDraftState":
        if self.stage == "collecting_pickup":
            self.pickup = None
            self.dropoff = None
        elif self.stage == "collecting_dropoff" and self.pickup is None:
            self.stage = "idle"
        elif self.stage in ("awaiting_confirmation", "creating_order") and (
            self.pickup is None or self.dropoff is None
        ):
            self.stage = "idle"
        if self.stage == "idle":
            self.pickup = None
            self.dropoff = None
        return self


class ClientState(_Document):
    backfill_on_null: ClassVar[tuple[str, ...]] = ("taxi", "delivery")

    taxi: OrderDraftState = Field(default_factory=OrderDraftState)
    delivery: OrderDraftState = Field(default_factory=OrderDraftState)


class TrackedStep(_Document):
    chat_id: int
    message_id: int
    cleanup: bool = True


class UiState(_Document):
    backfill_on_null: ClassVar[tuple[str, ...]] = ("steps", "home_actions")

    steps: dict[str, TrackedStep] = Field(default_factory=dict)
    home_actions: list[str] = Field(default_factory=list)
    pending_city_action: PendingCityAction | None = None

    @field_validator("home_actions", mode="after")
    @classmethod
    def _unique_actions(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @field_validator("pending_city_action", mode="before")
    @classmethod
    def _known_city_action(cls, value: Any) -> Any:
        return value if value in ("clientMenu", "executorMenu") else None


class SupportState(_Document):
    status: SupportStatus = "idle"
    last_thread_id: str | None = None
    last_thread_short_id: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: Any) -> str:
        return value if value in ("idle", "awaiting_message") else "idle"


class SessionUser(_Document):
    id: int
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class ExecutorAccessSnapshot(_Document):
    verified_roles: dict[ExecutorRole, bool] = Field(default_factory=dict)
    has_active_subscription: bool = False
    is_verified: bool = False


class AuthSnapshot(_Document):
    """Кэш последнего успешного AuthState. Источником правды не является."""

    telegram_id: int | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str = "client"
    status: str = "guest"
    phone: str | None = None
    phone_verified: bool = False
    city_selected: str | None = None
    is_blocked: bool = False
    executor: ExecutorAccessSnapshot = Field(default_factory=ExecutorAccessSnapshot)
    is_moderator: bool = False
    stale: bool = True
    refreshed_at: datetime | None = None


class SessionDocument(_Document):
    backfill_on_null: ClassVar[tuple[str, ...]] = ("ephemeral_messages", "executor", "client", "ui", "support")

    ephemeral_messages: list[int] = Field(default_factory=list)
    is_authenticated: bool = False
    awaiting_phone: bool = False
    phone_number: str | None = None
    city: str | None = None
    user: SessionUser | None = None
    executor: ExecutorFlowState = Field(default_factory=ExecutorFlowState)
    client: ClientState = Field(default_factory=ClientState)
    ui: UiState = Field(default_factory=UiState)
    support: SupportState = Field(default_factory=SupportState)
    auth_snapshot: AuthSnapshot | None = None

    @classmethod
    def default(cls) -> "SessionDocument":
        return cls()


def load_document(raw: Any) -> SessionDocument:
    if raw is None:
        return SessionDocument.default()
    if not isinstance(raw, dict):
        logger.warning("session_payload_invalid", extra={"error": f"type={type(raw).__name__}"})
        return SessionDocument.default()
    try:
        return SessionDocument.model_validate(raw)
    except ValidationError as exc:
        logger.warning("session_payload_invalid", extra={"error": str(exc)})
        return SessionDocument.default()


def dump_document(document: SessionDocument) -> dict[str, Any]:
    return document.model_dump(mode="json")
