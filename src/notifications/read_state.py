"""Per-user read and hidden state.

Clear-all hides notifications through a HideStrategy chosen once at startup:

* ``TombstoneHide`` writes ``read_at`` and ``hidden_at``; cleared entries leave
  the visible list.
* ``ReadOnlyFallback`` writes ``read_at`` only, for a backing schema without
  the hide column; entries stay listed but stop counting as unread.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from src.notifications.datastore import Datastore
from src.notifications.errors import NotFoundOrForbidden, NotificationError, StoreError
from src.notifications.models import ClearAllResult, ReadState
from src.notifications.store import NotificationStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HideStrategy(Protocol):
    """How clear-all persists its batch of read-state rows."""

    name: str
    hides: bool

    async def apply(
        self, datastore: Datastore, user_id: str, notification_ids: list[str], now: datetime,
    ) -> None: ...


class TombstoneHide:
    """Marks every cleared notification read and hidden in one upsert."""

    name = "tombstone"
    hides = True

    async def apply(
        self, datastore: Datastore, user_id: str, notification_ids: list[str], now: datetime,
    ) -> None:
        await datastore.upsert_read_states([
            ReadState(notification_id=nid, user_id=user_id, read_at=now, hidden_at=now)
            for nid in notification_ids
        ])


class ReadOnlyFallback:
    """Marks every cleared notification read without hiding it."""

    name = "read_only_fallback"
    hides = False

    async def apply(
        self, datastore: Datastore, user_id: str, notification_ids: list[str], now: datetime,
    ) -> None:
        logger.warning(
            "hide degraded: clearing %d notifications for %s as read only",
            len(notification_ids), user_id,
        )
        await datastore.upsert_read_states([
            ReadState(notification_id=nid, user_id=user_id, read_at=now)
            for nid in notification_ids
        ])


def select_hide_strategy(datastore: Datastore) -> HideStrategy:
    """Pick the hide strategy from the datastore's schema capabilities."""
    if datastore.supports_hidden_state():
        return TombstoneHide()
    logger.warning(
        "hide degraded: %s has no hidden_at support, clear-all will mark read only",
        type(datastore).__name__,
    )
    return ReadOnlyFallback()


class ReadStateTracker:
    """Marks notifications read, clears them, and counts unread ones."""

    def __init__(
        self,
        store: NotificationStore,
        strategy: Optional[HideStrategy] = None,
        clock: Clock = _utcnow,
    ):
        self.store = store
        self.datastore = store.datastore
        self.strategy = strategy or select_hide_strategy(self.datastore)
        self._clock = clock

    async def mark_read(self, notification_id: str, user_id: str) -> ReadState:
        """Mark one notification read for a user. Always un-hides it."""
        notification = await self.store.get(notification_id)
        if notification is None or not notification.is_addressed_to(user_id):
            raise NotFoundOrForbidden(notification_id=notification_id)

        state = ReadState(
            notification_id=notification_id,
            user_id=user_id,
            read_at=self._clock(),
            hidden_at=None,
        )
        await self._write(lambda: self.datastore.upsert_read_states([state]))
        logger.debug("Notification %s marked read by %s", notification_id, user_id)
        return state

    async def clear_all(self, user_id: str) -> ClearAllResult:
        """Hide every notification visible to the user at the snapshot time.

        Notifications created after the snapshot are left untouched.
        """
        snapshot_at = self._clock()
        visible = await self.store.list_visible_for(user_id)
        affected = [n.id for n in visible if n.created_at <= snapshot_at]

        if affected:
            await self._write(
                lambda: self.strategy.apply(self.datastore, user_id, affected, snapshot_at)
            )

        logger.info(
            "Cleared %d notifications for %s (strategy=%s)",
            len(affected), user_id, self.strategy.name,
        )
        return ClearAllResult(
            user_id=user_id,
            snapshot_at=snapshot_at,
            affected_ids=frozenset(affected),
            hidden=self.strategy.hides,
        )

    async def unread_count(self, user_id: str) -> int:
        return await self.store.unread_count_for(user_id)

    async def _write(self, operation) -> None:
        try:
            await operation()
        except NotificationError:
            raise
        except Exception as exc:
            logger.error("Read state write failed: %s", exc)
            raise StoreError(f"Failed to update read state: {exc}") from exc
