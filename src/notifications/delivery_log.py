"""Append-only push delivery log."""

import logging
from datetime import datetime, timezone
from typing import Optional

from src.notifications.config import (
    DEFAULT_NOTIFICATION_CONFIG,
    NotificationConfig,
    PushDeliveryStatus,
)
from src.notifications.datastore import Datastore
from src.notifications.models import DevicePushTarget, PushDeliveryLog

logger = logging.getLogger(__name__)


class DeliveryLog:
    """Records one row per push attempt."""

    def __init__(self, datastore: Datastore, config: Optional[NotificationConfig] = None):
        self.datastore = datastore
        self.config = config or DEFAULT_NOTIFICATION_CONFIG

    def _display_token(self, token: str) -> str:
        limit = self.config.log_token_prefix
        return token if len(token) <= limit else token[:limit] + "..."

    async def record(
        self,
        notification_id: str,
        target: DevicePushTarget,
        success: bool,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> PushDeliveryLog:
        entry = PushDeliveryLog(
            notification_id=notification_id,
            user_id=target.user_id,
            target_id=target.id,
            token=self._display_token(target.token),
            platform=target.platform,
            status=PushDeliveryStatus.SENT if success else PushDeliveryStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            sent_at=datetime.now(timezone.utc) if success else None,
        )
        return await self.datastore.append_delivery_log(entry)

    async def query(
        self,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[PushDeliveryLog]:
        return await self.datastore.list_delivery_logs(
            notification_id=notification_id, user_id=user_id,
        )

    async def get_stats(self, notification_id: Optional[str] = None) -> dict:
        """Sent/failed counts and success rate, optionally for one notification."""
        logs = await self.query(notification_id=notification_id)
        sent = sum(1 for l in logs if l.status != PushDeliveryStatus.FAILED)
        failed = len(logs) - sent
        return {
            "total": len(logs),
            "sent": sent,
            "failed": failed,
            "success_rate": sent / len(logs) if logs else 0.0,
        }
