"""Datastore interface and the in-memory implementation.

The datastore owns durable rows for notifications, read state, device
targets, preferences and delivery logs, plus the read-only user directory.
Writes to ``notifications`` and ``notification_reads`` are published on the
attached ChangeFeed after they are stored.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol, runtime_checkable

from src.notifications.changefeed import ChangeFeed
from src.notifications.config import (
    ChangeEventType,
    NOTIFICATIONS_TABLE,
    READS_TABLE,
)
from src.notifications.errors import DegradedSchema
from src.notifications.models import (
    ChangeEvent,
    DevicePushTarget,
    Notification,
    NotificationPreferences,
    PushDeliveryLog,
    ReadState,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class Datastore(Protocol):
    """Protocol for the durable notification datastore."""

    @property
    def change_feed(self) -> ChangeFeed: ...

    def supports_hidden_state(self) -> bool: ...

    # Notifications
    async def insert_notification(self, notification: Notification) -> Notification: ...

    async def get_notification(self, notification_id: str) -> Optional[Notification]: ...

    async def list_notifications_for(self, user_id: str) -> list[Notification]: ...

    # Read state
    async def list_read_states(self, user_id: str) -> list[ReadState]: ...

    async def upsert_read_states(self, states: list[ReadState]) -> None: ...

    # Preferences
    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]: ...

    async def insert_preferences_if_absent(
        self, prefs: NotificationPreferences,
    ) -> NotificationPreferences: ...

    async def save_preferences(self, prefs: NotificationPreferences) -> NotificationPreferences: ...

    # Device targets
    async def upsert_device_target(self, target: DevicePushTarget) -> DevicePushTarget: ...

    async def list_device_targets(
        self, user_id: str, active_only: bool = True,
    ) -> list[DevicePushTarget]: ...

    async def deactivate_device_target(self, target_id: str) -> bool: ...

    # Delivery logs
    async def append_delivery_log(self, log: PushDeliveryLog) -> PushDeliveryLog: ...

    async def list_delivery_logs(
        self,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[PushDeliveryLog]: ...

    # User directory
    async def list_active_user_ids(self) -> list[str]: ...


def newest_first(notifications: Iterable[Notification]) -> list[Notification]:
    """Order by created_at desc with id desc as the tiebreak."""
    return sorted(notifications, key=lambda n: (n.created_at, n.id), reverse=True)


class InMemoryDatastore:
    """Datastore backed by process memory.

    ``supports_hidden=False`` models a backing schema that lacks the hide
    column: persisting a ``hidden_at`` then raises DegradedSchema.
    """

    def __init__(
        self,
        change_feed: Optional[ChangeFeed] = None,
        supports_hidden: bool = True,
    ):
        self._change_feed = change_feed or ChangeFeed()
        self._supports_hidden = supports_hidden
        self._lock = asyncio.Lock()
        self._notifications: dict[str, Notification] = {}
        self._reads: dict[tuple[str, str], ReadState] = {}
        self._preferences: dict[str, NotificationPreferences] = {}
        self._targets: dict[str, DevicePushTarget] = {}
        self._logs: list[PushDeliveryLog] = []
        self._users: dict[str, bool] = {}

    @property
    def change_feed(self) -> ChangeFeed:
        return self._change_feed

    def supports_hidden_state(self) -> bool:
        return self._supports_hidden

    def add_user(self, user_id: str, active: bool = True) -> None:
        """Add or update an entry in the user directory."""
        self._users[user_id] = active

    # Notifications

    async def insert_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            stored = notification.with_read_at(None)
            self._notifications[stored.id] = stored
        await self._change_feed.publish(
            ChangeEvent(table=NOTIFICATIONS_TABLE, event_type=ChangeEventType.INSERT, new=stored)
        )
        return stored

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self._notifications.get(notification_id)

    async def list_notifications_for(self, user_id: str) -> list[Notification]:
        return newest_first(
            n for n in self._notifications.values() if n.is_addressed_to(user_id)
        )

    # Read state

    async def list_read_states(self, user_id: str) -> list[ReadState]:
        return [replace(s) for s in self._reads.values() if s.user_id == user_id]

    async def upsert_read_states(self, states: list[ReadState]) -> None:
        if not self._supports_hidden and any(s.hidden_at for s in states):
            raise DegradedSchema()

        events = []
        async with self._lock:
            for state in states:
                previous = self._reads.get(state.key)
                self._reads[state.key] = replace(state)
                events.append(ChangeEvent(
                    table=READS_TABLE,
                    event_type=ChangeEventType.UPDATE if previous else ChangeEventType.INSERT,
                    new=replace(state),
                    old=previous,
                ))

        for event in events:
            await self._change_feed.publish(event)

    # Preferences

    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        prefs = self._preferences.get(user_id)
        return replace(prefs) if prefs else None

    async def insert_preferences_if_absent(
        self, prefs: NotificationPreferences,
    ) -> NotificationPreferences:
        async with self._lock:
            existing = self._preferences.setdefault(prefs.user_id, replace(prefs))
        return replace(existing)

    async def save_preferences(self, prefs: NotificationPreferences) -> NotificationPreferences:
        async with self._lock:
            self._preferences[prefs.user_id] = replace(prefs)
        return replace(prefs)

    # Device targets

    async def upsert_device_target(self, target: DevicePushTarget) -> DevicePushTarget:
        async with self._lock:
            for existing in self._targets.values():
                if (existing.user_id, existing.token, existing.platform) == (
                    target.user_id, target.token, target.platform,
                ):
                    existing.device_id = target.device_id or existing.device_id
                    existing.app_version = target.app_version or existing.app_version
                    existing.is_active = True
                    existing.last_seen_at = target.last_seen_at or datetime.now(timezone.utc)
                    return replace(existing)
            self._targets[target.id] = replace(target)
        return replace(target)

    async def list_device_targets(
        self, user_id: str, active_only: bool = True,
    ) -> list[DevicePushTarget]:
        return [
            replace(t) for t in self._targets.values()
            if t.user_id == user_id and (t.is_active or not active_only)
        ]

    async def deactivate_device_target(self, target_id: str) -> bool:
        async with self._lock:
            target = self._targets.get(target_id)
            if target is None:
                return False
            target.is_active = False
        return True

    # Delivery logs

    async def append_delivery_log(self, log: PushDeliveryLog) -> PushDeliveryLog:
        self._logs.append(replace(log))
        return log

    async def list_delivery_logs(
        self,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[PushDeliveryLog]:
        logs = self._logs
        if notification_id is not None:
            logs = [l for l in logs if l.notification_id == notification_id]
        if user_id is not None:
            logs = [l for l in logs if l.user_id == user_id]
        return [replace(l) for l in logs]

    # User directory

    async def list_active_user_ids(self) -> list[str]:
        return [uid for uid, active in self._users.items() if active]
