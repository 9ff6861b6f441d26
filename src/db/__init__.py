"""Database package for the notification service."""

from src.db.base import Base
from src.db.engine import build_engine, get_sync_engine, get_sync_session_factory
from src.db.models import (
    UserRecord,
    NotificationRecord,
    NotificationReadRecord,
    DeviceTokenRecord,
    NotificationPreferenceRecord,
    PushDeliveryLogRecord,
)

__all__ = [
    "Base",
    "build_engine",
    "get_sync_engine",
    "get_sync_session_factory",
    "UserRecord",
    "NotificationRecord",
    "NotificationReadRecord",
    "DeviceTokenRecord",
    "NotificationPreferenceRecord",
    "PushDeliveryLogRecord",
]
