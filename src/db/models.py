"""SQLAlchemy ORM models for the notification service.

Tables:
- users: read-only user directory (owned by the auth service)
- notifications: durable business events
- notification_reads: per-user read and hidden state
- device_tokens: registered push targets
- notification_preferences: per-user push toggles
- push_delivery_logs: append-only push attempt log
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)

from src.db.base import Base


class UserRecord(Base):
    """User directory entry."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=True)
    name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class NotificationRecord(Base):
    """Durable notification."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)
    type = Column(String(100), nullable=False, index=True)
    payload_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    created_by_system = Column(Boolean, nullable=False, default=True)
    target_user_id = Column(String(36), nullable=True, index=True)

    __table_args__ = (
        Index("ix_notifications_created", "created_at", "id"),
    )


class NotificationReadRecord(Base):
    """Read and hidden state of one notification for one user."""

    __tablename__ = "notification_reads"

    notification_id = Column(
        String(36), ForeignKey("notifications.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id = Column(String(36), primary_key=True, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    hidden_at = Column(DateTime(timezone=True), nullable=True)


class DeviceTokenRecord(Base):
    """Device registration for push notifications."""

    __tablename__ = "device_tokens"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    platform = Column(String(20), nullable=False)  # ios, android, web
    token = Column(Text, nullable=False)
    device_id = Column(String(100), nullable=True)
    app_version = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "token", "platform", name="uq_device_tokens_user_token_platform"),
    )


class NotificationPreferenceRecord(Base):
    """User notification preferences."""

    __tablename__ = "notification_preferences"

    user_id = Column(String(36), primary_key=True)
    push_enabled = Column(Boolean, nullable=False, default=True)
    work_orders_enabled = Column(Boolean, nullable=False, default=True)
    inventory_enabled = Column(Boolean, nullable=False, default=True)
    training_enabled = Column(Boolean, nullable=False, default=True)
    blood_priority_enabled = Column(Boolean, nullable=False, default=True)
    production_enabled = Column(Boolean, nullable=False, default=True)
    events_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class PushDeliveryLogRecord(Base):
    """Push delivery attempt."""

    __tablename__ = "push_delivery_logs"

    id = Column(String(36), primary_key=True)
    notification_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    device_token_id = Column(String(36), nullable=True)
    token = Column(String(64), nullable=True)
    platform = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False)  # sent, failed, delivered
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
