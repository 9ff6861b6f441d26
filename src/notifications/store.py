"""Durable notification records and per-user visible lists."""

import logging
import re
from collections.abc import Mapping
from typing import Any, Optional

from src.notifications.datastore import Datastore, newest_first
from src.notifications.errors import NotificationError, StoreError, ValidationError
from src.notifications.models import Notification

logger = logging.getLogger(__name__)

TYPE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*\.[A-Za-z][A-Za-z0-9_.]*$")


class NotificationStore:
    """Creates notifications and answers visibility queries."""

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    async def create(
        self,
        type: str,
        payload: Optional[Mapping[str, Any]] = None,
        created_by_system: bool = True,
        target_user_id: Optional[str] = None,
    ) -> Notification:
        """Persist a new notification.

        Raises:
            ValidationError: malformed type or payload, or a non-system creator.
            StoreError: the datastore rejected the write.
        """
        if not isinstance(type, str) or not TYPE_PATTERN.match(type):
            raise ValidationError(
                f"Notification type must look like '<category>.<event>', got {type!r}",
                field="type",
            )
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValidationError("Payload must be a JSON object", field="payload")
        if not created_by_system:
            raise ValidationError(
                "Notifications can only be created by the system",
                field="created_by_system",
            )
        if target_user_id is not None and not str(target_user_id).strip():
            raise ValidationError("Target user id cannot be blank", field="target_user_id")

        notification = Notification(
            type=type,
            payload=dict(payload),
            created_by_system=True,
            target_user_id=target_user_id,
        )

        try:
            stored = await self.datastore.insert_notification(notification)
        except NotificationError:
            raise
        except Exception as exc:
            logger.error("Failed to persist notification %s: %s", type, exc)
            raise StoreError(f"Failed to persist notification: {exc}") from exc

        logger.info(
            "Notification %s created (type=%s, target=%s)",
            stored.id, stored.type, stored.target_user_id or "all",
        )
        return stored

    async def get(self, notification_id: str) -> Optional[Notification]:
        """Get a notification by ID."""
        try:
            return await self.datastore.get_notification(notification_id)
        except NotificationError:
            raise
        except Exception as exc:
            raise StoreError(f"Failed to load notification: {exc}") from exc

    async def list_visible_for(self, user_id: str) -> list[Notification]:
        """Visible notifications for a user, newest first, with read_at attached."""
        try:
            notifications = await self.datastore.list_notifications_for(user_id)
            states = await self.datastore.list_read_states(user_id)
        except NotificationError:
            raise
        except Exception as exc:
            raise StoreError(f"Failed to list notifications: {exc}") from exc

        by_id = {s.notification_id: s for s in states}
        visible = []
        for n in notifications:
            if not n.is_addressed_to(user_id):
                continue
            state = by_id.get(n.id)
            if state is not None and state.is_hidden:
                continue
            visible.append(n.with_read_at(state.read_at if state else None))
        return newest_first(visible)

    async def unread_count_for(self, user_id: str) -> int:
        visible = await self.list_visible_for(user_id)
        return sum(1 for n in visible if n.read_at is None)
