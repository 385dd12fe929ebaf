import enum
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freedom_bot.db.base import Base


class UserStatus(enum.StrEnum):
    GUEST = "guest"
    ACTIVE_CLIENT = "active_client"
    ACTIVE_EXECUTOR = "active_executor"
    SUSPENDED = "suspended"
    BANNED = "banned"


class VerificationStatus(enum.StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    EXPIRED = "expired"


class SubscriptionStatus(enum.StrEnum):
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderKind(enum.StrEnum):
    TAXI = "taxi"
    DELIVERY = "delivery"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSON_DOCUMENT = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    username: Mapped[str | None] = mapped_column(String(255))
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(32))
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    # Роль хранится строкой: в старых строках встречаются значения вроде "guest"/"executor".
    role: Mapped[str | None] = mapped_column(String(16), default="client")
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, values_callable=_enum_values, name="userstatus"),
        default=UserStatus.GUEST,
    )
    city_selected: Mapped[str | None] = mapped_column(String(32))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    verifications: Mapped[list["Verification"]] = relationship(back_populates="user")
    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="user")
    payments: Mapped[list["SubscriptionPayment"]] = relationship(back_populates="user")


class Verification(Base):
    __tablename__ = "verifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(16), index=True)
    status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, values_callable=_enum_values, name="verificationstatus"),
        index=True,
    )
    photos_count: Mapped[int] = mapped_column(Integer, default=0)
    applicant_chat_id: Mapped[int | None] = mapped_column(BigInteger)
    moderation_token: Mapped[str | None] = mapped_column(String(32))
    moderation_chat_id: Mapped[int | None] = mapped_column(BigInteger)
    moderation_message_id: Mapped[int | None] = mapped_column(BigInteger)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="verifications")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    chat_id: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, values_callable=_enum_values, name="subscriptionstatus"),
        index=True,
    )
    next_billing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    grace_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="subscriptions")


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    period_id: Mapped[str] = mapped_column(String(16))
    days: Mapped[int] = mapped_column(Integer)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=_enum_values, name="paymentstatus"),
        index=True,
    )
    receipt_file_id: Mapped[str | None] = mapped_column(Text)
    applicant_chat_id: Mapped[int | None] = mapped_column(BigInteger)
    moderation_token: Mapped[str | None] = mapped_column(String(32))
    moderation_chat_id: Mapped[int | None] = mapped_column(BigInteger)
    moderation_message_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped[User] = relationship(back_populates="payments")


class ChannelSettings(Base):
    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    verify_channel_id: Mapped[int | None] = mapped_column(BigInteger)
    drivers_channel_id: Mapped[int | None] = mapped_column(BigInteger)


class SessionRecord(Base):
    __tablename__ = "sessions"

    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[dict] = mapped_column(JSON_DOCUMENT, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (PrimaryKeyConstraint("scope", "scope_id"),)


class RecentAction(Base):
    __tablename__ = "recent_actions"

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    __table_args__ = (PrimaryKeyConstraint("user_id", "key"),)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[OrderKind] = mapped_column(
        Enum(OrderKind, values_callable=_enum_values, name="orderkind"), index=True
    )
    status: Mapped[str] = mapped_column(String(16), default="new", index=True)
    client_telegram_id: Mapped[int] = mapped_column(BigInteger, index=True)
    client_phone: Mapped[str | None] = mapped_column(String(32))
    city: Mapped[str | None] = mapped_column(String(32))
    pickup_address: Mapped[str] = mapped_column(Text)
    dropoff_address: Mapped[str] = mapped_column(Text)
    channel_chat_id: Mapped[int | None] = mapped_column(BigInteger)
    channel_message_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class SupportThread(Base):
    __tablename__ = "support_threads"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    short_id: Mapped[str] = mapped_column(String(8), unique=True)
    user_chat_id: Mapped[int] = mapped_column(BigInteger, index=True)
    user_telegram_id: Mapped[int | None] = mapped_column(BigInteger)
    user_message_id: Mapped[int] = mapped_column(BigInteger)
    moderator_chat_id: Mapped[int] = mapped_column(BigInteger)
    moderator_message_id: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(16), default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
