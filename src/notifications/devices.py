"""Device registration and management."""

import logging
from datetime import datetime, timezone
from typing import Optional

from src.notifications.config import DevicePlatform
from src.notifications.datastore import Datastore
from src.notifications.errors import ValidationError
from src.notifications.models import DevicePushTarget

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Registers device tokens and deactivates dead ones."""

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    async def register_device(
        self,
        user_id: str,
        platform: DevicePlatform | str,
        token: str,
        device_id: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> DevicePushTarget:
        """Register a new device token or refresh an existing one.

        Registering a known (user, token, platform) reactivates it and
        refreshes its last-seen time.
        """
        if not token or not token.strip():
            raise ValidationError("Device token is required", field="token")
        if isinstance(platform, str):
            try:
                platform = DevicePlatform(platform)
            except ValueError:
                raise ValidationError(
                    f"Unsupported platform {platform!r}", field="platform",
                ) from None

        target = DevicePushTarget(
            user_id=user_id,
            platform=platform,
            token=token.strip(),
            device_id=device_id,
            app_version=app_version,
            last_seen_at=datetime.now(timezone.utc),
        )
        saved = await self.datastore.upsert_device_target(target)
        logger.info("Device %s registered for %s (%s)", saved.id, user_id, platform.value)
        return saved

    async def get_user_devices(
        self, user_id: str, active_only: bool = True,
    ) -> list[DevicePushTarget]:
        """Get all devices for a user."""
        return await self.datastore.list_device_targets(user_id, active_only=active_only)

    async def deactivate_device(self, target_id: str) -> bool:
        """Deactivate a device (keeps record but won't receive notifications)."""
        deactivated = await self.datastore.deactivate_device_target(target_id)
        if deactivated:
            logger.info("Device target %s deactivated", target_id)
        return deactivated
