"""Configuration for Notifications & Push Delivery."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class NotificationCategory(Enum):
    """Notification categories, keyed by the type prefix before the first dot."""
    WORK_ORDERS = "workOrder"
    INVENTORY = "inventory"
    TRAINING = "training"
    BLOOD_PRIORITY = "bloodPriority"
    PRODUCTION = "production"
    EVENTS = "event"


class DevicePlatform(Enum):
    """Device platforms a push token can be registered for."""
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class PushChannelKind(Enum):
    """Push delivery channels."""
    MOBILE = "mobile"  # Expo push service (FCM/APNs behind it)
    WEB = "web"  # Browser Web Push protocol


class PushDeliveryStatus(Enum):
    """Push delivery log status."""
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"


class ChangeEventType(Enum):
    """Row change events published by the datastore."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"


NOTIFICATIONS_TABLE = "notifications"
READS_TABLE = "notification_reads"


PLATFORM_CHANNELS: dict[DevicePlatform, PushChannelKind] = {
    DevicePlatform.IOS: PushChannelKind.MOBILE,
    DevicePlatform.ANDROID: PushChannelKind.MOBILE,
    DevicePlatform.WEB: PushChannelKind.WEB,
}


# Preference flag gating each category
CATEGORY_PREFERENCE_FLAGS: dict[NotificationCategory, str] = {
    NotificationCategory.WORK_ORDERS: "work_orders_enabled",
    NotificationCategory.INVENTORY: "inventory_enabled",
    NotificationCategory.TRAINING: "training_enabled",
    NotificationCategory.BLOOD_PRIORITY: "blood_priority_enabled",
    NotificationCategory.PRODUCTION: "production_enabled",
    NotificationCategory.EVENTS: "events_enabled",
}


# Error codes each channel reports for tokens that will never work again
INVALID_TOKEN_ERRORS: dict[PushChannelKind, frozenset[str]] = {
    PushChannelKind.MOBILE: frozenset({"DeviceNotRegistered", "InvalidExpoPushToken"}),
    PushChannelKind.WEB: frozenset({"404", "410", "InvalidSubscription"}),
}


def category_for_type(notification_type: str) -> Optional[NotificationCategory]:
    """Resolve the category of a notification type, None when unknown."""
    prefix = notification_type.split(".", 1)[0]
    try:
        return NotificationCategory(prefix)
    except ValueError:
        return None


@dataclass
class NotificationConfig:
    """Notification system configuration."""

    # Expo push service
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: Optional[str] = None
    mobile_batch_size: int = 100

    # Web Push (VAPID)
    vapid_private_key: Optional[str] = None
    vapid_subject: str = "mailto:notifications@glassline.local"
    web_push_ttl_seconds: int = 3600

    # Timeouts
    send_timeout_seconds: float = 10.0

    # Delivery logs keep a short token prefix only
    log_token_prefix: int = 20

    # Push payload extras
    push_sound: str = "default"
    push_priority: str = "high"
    badge: int = 1

    default_deep_link: str = "/notifications"

    # Recent dispatch reports kept in memory by the service
    report_history: int = 200
    extra_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> "NotificationConfig":
        """Build the runtime config from environment-backed settings."""
        return cls(
            expo_push_url=settings.expo_push_url,
            expo_access_token=settings.expo_access_token or None,
            mobile_batch_size=settings.mobile_batch_size,
            vapid_private_key=settings.vapid_private_key or None,
            vapid_subject=settings.vapid_subject,
            send_timeout_seconds=settings.push_timeout_seconds,
        )


DEFAULT_NOTIFICATION_CONFIG = NotificationConfig()
