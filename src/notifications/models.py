"""Data models for Notifications & Push Delivery."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Union
import uuid

from src.notifications.config import (
    ChangeEventType,
    DevicePlatform,
    PushChannelKind,
    PushDeliveryStatus,
    PLATFORM_CHANNELS,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Notification:
    """An immutable business event addressed to one user or to everyone.

    ``read_at`` is not part of the record: it is derived from the reading
    user's read state and attached to list results only.
    """

    type: str
    payload: dict = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)
    created_by_system: bool = True
    target_user_id: Optional[str] = None
    read_at: Optional[datetime] = None

    @property
    def is_global(self) -> bool:
        return self.target_user_id is None

    def is_addressed_to(self, user_id: str) -> bool:
        """Check if the notification targets this user (or everyone)."""
        return self.target_user_id is None or self.target_user_id == user_id

    def with_read_at(self, read_at: Optional[datetime]) -> "Notification":
        return replace(self, read_at=read_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "payload": dict(self.payload),
            "created_at": self.created_at.isoformat(),
            "created_by_system": self.created_by_system,
            "target_user_id": self.target_user_id,
            "read_at": _iso(self.read_at),
        }


@dataclass
class ReadState:
    """Per-(notification, user) read and hidden state."""

    notification_id: str
    user_id: str
    read_at: Optional[datetime] = None
    hidden_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.notification_id, self.user_id)

    @property
    def is_hidden(self) -> bool:
        return self.hidden_at is not None

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "user_id": self.user_id,
            "read_at": _iso(self.read_at),
            "hidden_at": _iso(self.hidden_at),
        }


@dataclass
class NotificationPreferences:
    """Per-user push toggles: a master switch plus one flag per category."""

    user_id: str
    push_enabled: bool = True
    work_orders_enabled: bool = True
    inventory_enabled: bool = True
    training_enabled: bool = True
    blood_priority_enabled: bool = True
    production_enabled: bool = True
    events_enabled: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: Optional[datetime] = None

    FLAGS = (
        "push_enabled",
        "work_orders_enabled",
        "inventory_enabled",
        "training_enabled",
        "blood_priority_enabled",
        "production_enabled",
        "events_enabled",
    )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"user_id": self.user_id}
        data.update({flag: getattr(self, flag) for flag in self.FLAGS})
        data["updated_at"] = _iso(self.updated_at)
        return data


@dataclass
class DevicePushTarget:
    """Registered device token for push notifications."""

    user_id: str
    platform: DevicePlatform
    token: str
    id: str = field(default_factory=_new_id)
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    last_seen_at: Optional[datetime] = None

    @property
    def channel(self) -> PushChannelKind:
        return PLATFORM_CHANNELS[self.platform]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform.value,
            "device_id": self.device_id,
            "app_version": self.app_version,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "last_seen_at": _iso(self.last_seen_at),
        }


@dataclass
class PushDeliveryLog:
    """Append-only record of one push delivery attempt."""

    notification_id: str
    user_id: str
    target_id: Optional[str]
    status: PushDeliveryStatus
    token: str = ""
    platform: Optional[DevicePlatform] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "notification_id": self.notification_id,
            "user_id": self.user_id,
            "target_id": self.target_id,
            "token": self.token,
            "platform": self.platform.value if self.platform else None,
            "status": self.status.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
            "delivered_at": _iso(self.delivered_at),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class PushContent:
    """Rendered push message."""

    title: str
    body: str
    deep_link: str

    def to_dict(self) -> dict:
        return {"title": self.title, "body": self.body, "deep_link": self.deep_link}


@dataclass(frozen=True)
class MobilePushTarget:
    """Mobile push target: an Expo push token."""

    target_id: str
    token: str
    kind: PushChannelKind = PushChannelKind.MOBILE


@dataclass(frozen=True)
class WebPushTarget:
    """Web push target: a browser push subscription."""

    target_id: str
    subscription: dict
    kind: PushChannelKind = PushChannelKind.WEB

    @property
    def endpoint(self) -> str:
        return self.subscription.get("endpoint", "")


PushTarget = Union[MobilePushTarget, WebPushTarget]


@dataclass
class ChannelSendResult:
    """Outcome of sending to one push target."""

    target_id: str
    success: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "target_id": self.target_id,
            "success": self.success,
            "message_id": self.message_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass
class ChangeEvent:
    """A row change published by the datastore on the change feed."""

    table: str
    event_type: ChangeEventType
    new: Any
    old: Any = None
    commit_timestamp: datetime = field(default_factory=_now)


@dataclass
class ClearAllResult:
    """Outcome of a clear-all: the snapshot and what it touched."""

    user_id: str
    snapshot_at: datetime
    affected_ids: frozenset = frozenset()
    hidden: bool = True

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "snapshot_at": self.snapshot_at.isoformat(),
            "affected_ids": sorted(self.affected_ids),
            "hidden": self.hidden,
        }


@dataclass
class DispatchReport:
    """Summary of one push dispatch run."""

    notification_id: str
    recipients: int = 0
    skipped_by_preferences: int = 0
    skipped_no_targets: int = 0
    sent: int = 0
    failed: int = 0
    deactivated: int = 0
    user_errors: int = 0
    started_at: datetime = field(default_factory=_now)
    finished_at: Optional[datetime] = None

    @property
    def attempts(self) -> int:
        return self.sent + self.failed

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "recipients": self.recipients,
            "skipped_by_preferences": self.skipped_by_preferences,
            "skipped_no_targets": self.skipped_no_targets,
            "sent": self.sent,
            "failed": self.failed,
            "deactivated": self.deactivated,
            "user_errors": self.user_errors,
        }
