"""Notifications & Push Delivery.

Notification core of the glass-manufacturing operations app:
- Durable notifications with per-user read/hidden state
- Realtime fan-out to connected sessions
- Optimistic client cache reconciliation
- Push dispatch to mobile (Expo) and web (Web Push) devices
"""

from src.notifications.config import (
    NotificationCategory,
    DevicePlatform,
    PushChannelKind,
    PushDeliveryStatus,
    ChangeEventType,
    NotificationConfig,
    DEFAULT_NOTIFICATION_CONFIG,
    category_for_type,
)
from src.notifications.errors import (
    ErrorCode,
    NotificationError,
    StoreError,
    NotFoundOrForbidden,
    ValidationError,
    ChannelError,
    DegradedSchema,
)
from src.notifications.models import (
    Notification,
    ReadState,
    NotificationPreferences,
    DevicePushTarget,
    PushDeliveryLog,
    PushContent,
    MobilePushTarget,
    WebPushTarget,
    PushTarget,
    ChannelSendResult,
    ChangeEvent,
    ClearAllResult,
    DispatchReport,
)
from src.notifications.changefeed import ChangeFeed, Subscription
from src.notifications.datastore import Datastore, InMemoryDatastore
from src.notifications.store import NotificationStore
from src.notifications.read_state import (
    HideStrategy,
    TombstoneHide,
    ReadOnlyFallback,
    ReadStateTracker,
    select_hide_strategy,
)
from src.notifications.preferences import PreferenceGate
from src.notifications.devices import DeviceRegistry
from src.notifications.delivery_log import DeliveryLog
from src.notifications.rendering import (
    render_push_content,
    format_notification_text,
    alert_message,
    deep_link,
    parse_payload_date,
)
from src.notifications.channels import ExpoPushChannel, WebPushChannel, PushChannels
from src.notifications.dispatcher import PushDispatcher
from src.notifications.realtime import (
    RealtimeFanout,
    FanoutSession,
    RealtimeInsert,
    ReadStateChange,
)
from src.notifications.reconciler import (
    ClientCacheReconciler,
    Mutation,
    MutationKind,
    MutationState,
    Notifier,
)
from src.notifications.inventory import StockLevel, crossed_below_threshold
from src.notifications.service import NotificationService

__all__ = [
    # Config
    "NotificationCategory",
    "DevicePlatform",
    "PushChannelKind",
    "PushDeliveryStatus",
    "ChangeEventType",
    "NotificationConfig",
    "DEFAULT_NOTIFICATION_CONFIG",
    "category_for_type",
    # Errors
    "ErrorCode",
    "NotificationError",
    "StoreError",
    "NotFoundOrForbidden",
    "ValidationError",
    "ChannelError",
    "DegradedSchema",
    # Models
    "Notification",
    "ReadState",
    "NotificationPreferences",
    "DevicePushTarget",
    "PushDeliveryLog",
    "PushContent",
    "MobilePushTarget",
    "WebPushTarget",
    "PushTarget",
    "ChannelSendResult",
    "ChangeEvent",
    "ClearAllResult",
    "DispatchReport",
    # Storage and realtime
    "ChangeFeed",
    "Subscription",
    "Datastore",
    "InMemoryDatastore",
    "NotificationStore",
    "HideStrategy",
    "TombstoneHide",
    "ReadOnlyFallback",
    "ReadStateTracker",
    "select_hide_strategy",
    "RealtimeFanout",
    "FanoutSession",
    "RealtimeInsert",
    "ReadStateChange",
    # Push
    "PreferenceGate",
    "DeviceRegistry",
    "DeliveryLog",
    "ExpoPushChannel",
    "WebPushChannel",
    "PushChannels",
    "PushDispatcher",
    # Rendering
    "render_push_content",
    "format_notification_text",
    "alert_message",
    "deep_link",
    "parse_payload_date",
    # Client
    "ClientCacheReconciler",
    "Mutation",
    "MutationKind",
    "MutationState",
    "Notifier",
    # Inventory
    "StockLevel",
    "crossed_below_threshold",
    # Service
    "NotificationService",
]
