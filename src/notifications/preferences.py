"""User notification preferences management."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping

from src.notifications.config import CATEGORY_PREFERENCE_FLAGS, category_for_type
from src.notifications.datastore import Datastore
from src.notifications.errors import NotificationError, StoreError, ValidationError
from src.notifications.models import NotificationPreferences

logger = logging.getLogger(__name__)


class PreferenceGate:
    """Decides whether a user wants push for a notification type."""

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    async def get_or_create_default(self, user_id: str) -> NotificationPreferences:
        """Get user preferences, creating the all-enabled default if missing."""
        try:
            prefs = await self.datastore.get_preferences(user_id)
            if prefs is not None:
                return prefs
            # A concurrent creator wins; the insert returns whichever row exists.
            return await self.datastore.insert_preferences_if_absent(
                NotificationPreferences(user_id=user_id)
            )
        except NotificationError:
            raise
        except Exception as exc:
            raise StoreError(f"Failed to load preferences: {exc}") from exc

    async def should_deliver_push(self, user_id: str, notification_type: str) -> bool:
        """Check the master switch, then the category flag for the type.

        Types with an unknown category are allowed.
        """
        prefs = await self.get_or_create_default(user_id)
        if not prefs.push_enabled:
            return False

        category = category_for_type(notification_type)
        if category is None:
            return True
        return bool(getattr(prefs, CATEGORY_PREFERENCE_FLAGS[category]))

    async def update_preferences(
        self, user_id: str, patch: Mapping[str, Any],
    ) -> NotificationPreferences:
        """Apply a partial update of preference flags."""
        unknown = [k for k in patch if k not in NotificationPreferences.FLAGS]
        if unknown:
            raise ValidationError(
                f"Unknown preference flags: {', '.join(sorted(unknown))}",
                field=unknown[0],
            )
        for key, value in patch.items():
            if not isinstance(value, bool):
                raise ValidationError(f"{key} must be a boolean", field=key)

        prefs = await self.get_or_create_default(user_id)
        updated = replace(prefs, **dict(patch), updated_at=datetime.now(timezone.utc))
        try:
            saved = await self.datastore.save_preferences(updated)
        except NotificationError:
            raise
        except Exception as exc:
            raise StoreError(f"Failed to save preferences: {exc}") from exc

        logger.info("Preferences updated for %s: %s", user_id, sorted(patch))
        return saved
