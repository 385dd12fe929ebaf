"""orders and support threads

Revision ID: 0002_orders_and_support_threads
Revises: 0001_create_core_tables
Create Date: 2025-02-03 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_orders_and_support_threads"
down_revision = "0001_create_core_tables"
branch_labels = None
depends_on = None


ORDER_KIND = sa.Enum("taxi", "delivery", name="orderkind")


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", ORDER_KIND, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="new"),
        sa.Column("client_telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("client_phone", sa.String(length=32), nullable=True),
        sa.Column("city", sa.String(length=32), nullable=True),
        sa.Column("pickup_address", sa.Text(), nullable=False),
        sa.Column("dropoff_address", sa.Text(), nullable=False),
        sa.Column("channel_chat_id", sa.BigInteger(), nullable=True),
        sa.Column("channel_message_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_orders_kind"), "orders", ["kind"], unique=False)
    op.create_index(op.f("ix_orders_status"), "orders", ["status"], unique=False)
    op.create_index(
        op.f("ix_orders_client_telegram_id"), "orders", ["client_telegram_id"], unique=False
    )

    op.create_table(
        "support_threads",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("short_id", sa.String(length=8), nullable=False),
        sa.Column("user_chat_id", sa.BigInteger(), nullable=False),
        sa.Column("user_telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("user_message_id", sa.BigInteger(), nullable=False),
        sa.Column("moderator_chat_id", sa.BigInteger(), nullable=False),
        sa.Column("moderator_message_id", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("short_id"),
    )
    op.create_index(
        op.f("ix_support_threads_user_chat_id"), "support_threads", ["user_chat_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_support_threads_user_chat_id"), table_name="support_threads")
    op.drop_table("support_threads")
    op.drop_index(op.f("ix_orders_client_telegram_id"), table_name="orders")
    op.drop_index(op.f("ix_orders_status"), table_name="orders")
    op.drop_index(op.f("ix_orders_kind"), table_name="orders")
    op.drop_table("orders")
    ORDER_KIND.drop(op.get_bind(), checkfirst=True)
