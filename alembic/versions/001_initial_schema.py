"""Notification core tables.

Revision ID: 001
Revises:
Create Date: 2026-09-28

"""
from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # users - read-only directory mirrored from the auth service
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # notifications - durable business events
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("type", sa.String(100), nullable=False, index=True),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by_system", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("target_user_id", sa.String(36), nullable=True, index=True),
    )
    op.create_index("ix_notifications_created", "notifications", ["created_at", "id"])

    # notification_reads - per-user read state (hidden_at arrives in 002)
    op.create_table(
        "notification_reads",
        sa.Column(
            "notification_id", sa.String(36),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("user_id", sa.String(36), primary_key=True, index=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )

    # device_tokens - registered push targets
    op.create_table(
        "device_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False, index=True),
        sa.Column("platform", sa.String(20), nullable=False),  # ios, android, web
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("device_id", sa.String(100), nullable=True),
        sa.Column("app_version", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "token", "platform", name="uq_device_tokens_user_token_platform"),
    )

    # notification_preferences - push toggles, one row per user
    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("work_orders_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("inventory_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("training_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("blood_priority_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("production_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("events_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # push_delivery_logs - append-only delivery attempts
    op.create_table(
        "push_delivery_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("notification_id", sa.String(36), nullable=False, index=True),
        sa.Column("user_id", sa.String(36), nullable=False, index=True),
        sa.Column("device_token_id", sa.String(36), nullable=True),
        sa.Column("token", sa.String(64), nullable=True),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),  # sent, failed, delivered
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("push_delivery_logs")
    op.drop_table("notification_preferences")
    op.drop_table("device_tokens")
    op.drop_table("notification_reads")
    op.drop_index("ix_notifications_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("users")
