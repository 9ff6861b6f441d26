"""Notification service: the application-facing entry point."""

import asyncio
import logging
from collections import deque
from typing import Any, Mapping, Optional

from src.notifications.channels import PushChannels
from src.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    DevicePlatform,
    NotificationConfig,
)
from src.notifications.datastore import Datastore, InMemoryDatastore
from src.notifications.delivery_log import DeliveryLog
from src.notifications.devices import DeviceRegistry
from src.notifications.dispatcher import PushDispatcher
from src.notifications.inventory import StockLevel, crossed_below_threshold
from src.notifications.models import (
    ClearAllResult,
    DevicePushTarget,
    DispatchReport,
    Notification,
    NotificationPreferences,
    PushDeliveryLog,
    ReadState,
)
from src.notifications.preferences import PreferenceGate
from src.notifications.read_state import HideStrategy, ReadStateTracker
from src.notifications.realtime import FanoutSession, RealtimeFanout, SessionSink
from src.notifications.store import NotificationStore

logger = logging.getLogger(__name__)


class NotificationService:
    """Wires the store, read state, preferences, push and realtime together.

    Creating a notification never waits for push: dispatch runs as a
    background task, and ``drain()`` awaits whatever is still running.
    """

    def __init__(
        self,
        datastore: Optional[Datastore] = None,
        config: Optional[NotificationConfig] = None,
        channels: Optional[PushChannels] = None,
        hide_strategy: Optional[HideStrategy] = None,
    ):
        self.config = config or DEFAULT_NOTIFICATION_CONFIG
        self.datastore = datastore or InMemoryDatastore()
        self.store = NotificationStore(self.datastore)
        self.read_state = ReadStateTracker(self.store, strategy=hide_strategy)
        self.preferences = PreferenceGate(self.datastore)
        self.devices = DeviceRegistry(self.datastore)
        self.delivery_log = DeliveryLog(self.datastore, self.config)
        self.dispatcher = PushDispatcher(
            self.datastore,
            channels=channels or PushChannels(config=self.config),
            preferences=self.preferences,
            devices=self.devices,
            delivery_log=self.delivery_log,
            config=self.config,
        )
        self.fanout = RealtimeFanout(self.datastore.change_feed)
        self._dispatch_tasks: set[asyncio.Task] = set()
        self.dispatch_reports: deque[DispatchReport] = deque(maxlen=self.config.report_history)

    # Notifications

    async def create_notification(
        self,
        type: str,
        payload: Optional[Mapping[str, Any]] = None,
        target_user_id: Optional[str] = None,
    ) -> Notification:
        """Persist a notification and schedule its push dispatch.

        Persistence errors propagate; push errors never do.
        """
        notification = await self.store.create(
            type, payload, created_by_system=True, target_user_id=target_user_id,
        )
        task = asyncio.create_task(self._dispatch(notification))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        return notification

    async def _dispatch(self, notification: Notification) -> None:
        try:
            report = await self.dispatcher.dispatch(notification)
        except Exception as exc:
            logger.error("Push dispatch for %s aborted: %s", notification.id, exc)
            return
        self.dispatch_reports.append(report)

    async def drain(self) -> None:
        """Wait for all scheduled push dispatches to finish."""
        while self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    async def list_visible(self, user_id: str) -> list[Notification]:
        return await self.store.list_visible_for(user_id)

    async def unread_count(self, user_id: str) -> int:
        return await self.read_state.unread_count(user_id)

    async def mark_read(self, notification_id: str, user_id: str) -> ReadState:
        return await self.read_state.mark_read(notification_id, user_id)

    async def clear_all(self, user_id: str) -> ClearAllResult:
        return await self.read_state.clear_all(user_id)

    # Devices and preferences

    async def register_device_token(
        self,
        user_id: str,
        platform: DevicePlatform | str,
        token: str,
        device_id: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> DevicePushTarget:
        return await self.devices.register_device(
            user_id, platform, token, device_id=device_id, app_version=app_version,
        )

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        return await self.preferences.get_or_create_default(user_id)

    async def update_preferences(
        self, user_id: str, patch: Mapping[str, Any],
    ) -> NotificationPreferences:
        return await self.preferences.update_preferences(user_id, patch)

    async def delivery_logs(
        self,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[PushDeliveryLog]:
        return await self.delivery_log.query(notification_id=notification_id, user_id=user_id)

    # Inventory

    async def notify_stock_change(
        self,
        item_id: str,
        item_name: str,
        previous: Optional[StockLevel],
        current: StockLevel,
    ) -> Optional[Notification]:
        """Create a global low-stock notification when the item crosses its threshold."""
        if not crossed_below_threshold(previous, current):
            return None
        logger.info("Item %s crossed below its stock threshold", item_id)
        return await self.create_notification(
            "inventory.lowStock",
            {
                "itemId": item_id,
                "itemName": item_name,
                "stock": current.stock,
                "threshold": current.threshold,
            },
        )

    # Realtime

    def open_session(self, user_id: str, sink: SessionSink) -> FanoutSession:
        return self.fanout.open_session(user_id, sink)

    async def close(self) -> None:
        await self.drain()
        await self.dispatcher.channels.close()
