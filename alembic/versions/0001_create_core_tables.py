"""create core tables

Revision ID: 0001_create_core_tables
Revises: 
Create Date: 2025-01-15 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_create_core_tables"
down_revision = None
branch_labels = None
depends_on = None


USER_STATUS = sa.Enum(
    "guest", "active_client", "active_executor", "suspended", "banned", name="userstatus"
)
VERIFICATION_STATUS = sa.Enum("pending", "active", "rejected", "expired", name="verificationstatus")
SUBSCRIPTION_STATUS = sa.Enum("active", "canceled", "expired", name="subscriptionstatus")
PAYMENT_STATUS = sa.Enum("pending", "approved", "rejected", name="paymentstatus")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("role", sa.String(length=16), nullable=True, server_default="client"),
        sa.Column("status", USER_STATUS, nullable=False, server_default="guest"),
        sa.Column("city_selected", sa.String(length=32), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("telegram_id"),
    )
    op.create_index(op.f("ix_users_telegram_id"), "users", ["telegram_id"], unique=False)

    op.create_table(
        "verifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("status", VERIFICATION_STATUS, nullable=False),
        sa.Column("photos_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("applicant_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("moderation_token", sa.String(length=32), nullable=True),
        sa.Column("moderation_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("moderation_message_id", sa.BigInteger(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_verifications_user_id"), "verifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_verifications_role"), "verifications", ["role"], unique=False)
    op.create_index(op.f("ix_verifications_status"), "verifications", ["status"], unique=False)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=True),
        sa.Column("status", SUBSCRIPTION_STATUS, nullable=False),
        sa.Column("next_billing_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_subscriptions_user_id"), "subscriptions", ["user_id"], unique=False)
    op.create_index(op.f("ix_subscriptions_status"), "subscriptions", ["status"], unique=False)

    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.String(length=16), nullable=False),
        sa.Column("days", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("receipt_file_id", sa.Text(), nullable=True),
        sa.Column("applicant_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("moderation_token", sa.String(length=32), nullable=True),
        sa.Column("moderation_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("moderation_message_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_subscription_payments_user_id"), "subscription_payments", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_subscription_payments_status"), "subscription_payments", ["status"], unique=False
    )

    op.create_table(
        "channels",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("verify_channel_id", sa.BigInteger(), nullable=True),
        sa.Column("drivers_channel_id", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "sessions",
        sa.Column("scope", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=32), nullable=False),
        sa.Column("state", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("scope", "scope_id"),
    )

    op.create_table(
        "recent_actions",
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "key"),
    )
    op.create_index(
        op.f("ix_recent_actions_expires_at"), "recent_actions", ["expires_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_recent_actions_expires_at"), table_name="recent_actions")
    op.drop_table("recent_actions")
    op.drop_table("sessions")
    op.drop_table("channels")
    op.drop_index(op.f("ix_subscription_payments_status"), table_name="subscription_payments")
    op.drop_index(op.f("ix_subscription_payments_user_id"), table_name="subscription_payments")
    op.drop_table("subscription_payments")
    op.drop_index(op.f("ix_subscriptions_status"), table_name="subscriptions")
    op.drop_index(op.f("ix_subscriptions_user_id"), table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index(op.f("ix_verifications_status"), table_name="verifications")
    op.drop_index(op.f("ix_verifications_role"), table_name="verifications")
    op.drop_index(op.f("ix_verifications_user_id"), table_name="verifications")
    op.drop_table("verifications")
    op.drop_index(op.f("ix_users_telegram_id"), table_name="users")
    op.drop_table("users")
    PAYMENT_STATUS.drop(op.get_bind(), checkfirst=True)
    SUBSCRIPTION_STATUS.drop(op.get_bind(), checkfirst=True)
    VERIFICATION_STATUS.drop(op.get_bind(), checkfirst=True)
    USER_STATUS.drop(op.get_bind(), checkfirst=True)
