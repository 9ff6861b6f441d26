"""Client-side notification cache with optimistic updates.

Local mutations apply immediately and move through ``pending`` to
``confirmed`` or ``reverted``. After a clear-all, a guard keyed on a logical
watermark keeps realtime inserts and resyncs from bringing cleared entries
back: anything created at or before the watermark, or listed in the cleared
set, is suppressed. The watermark is the local clock while the clear is in
flight and the server snapshot time once it is confirmed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from src.notifications.models import ClearAllResult, Notification
from src.notifications.realtime import ReadStateChange, RealtimeInsert, SessionEvent
from src.notifications.rendering import alert_message

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notifier(Protocol):
    """Local device alert (sound or vibration)."""

    def play_alert(self, notification_type: str, message: Optional[str] = None) -> None: ...


class NotificationClient(Protocol):
    """Server operations the cache talks to."""

    async def list_visible(self, user_id: str) -> list[Notification]: ...

    async def unread_count(self, user_id: str) -> int: ...

    async def mark_read(self, notification_id: str, user_id: str): ...

    async def clear_all(self, user_id: str) -> ClearAllResult: ...


class MutationKind(Enum):
    MARK_READ = "mark_read"
    CLEAR_ALL = "clear_all"


class MutationState(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class Mutation:
    """One optimistic mutation and its outcome."""

    kind: MutationKind
    notification_id: Optional[str] = None
    state: MutationState = MutationState.PENDING
    error: Optional[Exception] = None
    result: object = None
    created_at: datetime = field(default_factory=_utcnow)
    settled_at: Optional[datetime] = None

    def confirm(self, result: object = None) -> None:
        if self.state != MutationState.PENDING:
            raise ValueError(f"Mutation already {self.state.value}")
        self.state = MutationState.CONFIRMED
        self.result = result
        self.settled_at = _utcnow()

    def revert(self, error: Exception) -> None:
        if self.state != MutationState.PENDING:
            raise ValueError(f"Mutation already {self.state.value}")
        self.state = MutationState.REVERTED
        self.error = error
        self.settled_at = _utcnow()


@dataclass
class ClearGuard:
    """Suppresses entries a clear-all already removed."""

    watermark: datetime
    cleared_ids: frozenset = frozenset()
    confirmed: bool = False

    def suppresses(self, notification: Notification) -> bool:
        return notification.created_at <= self.watermark or notification.id in self.cleared_ids


class ClientCacheReconciler:
    """Per-session notification list and unread counter."""

    def __init__(
        self,
        client: NotificationClient,
        user_id: str,
        notifier: Optional[Notifier] = None,
        on_error: Optional[Callable[[Mutation], None]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.user_id = user_id
        self._notifier = notifier
        self._on_error = on_error
        self._clock = clock

        self.notifications: list[Notification] = []
        self.unread_count: int = 0
        self.mutations: list[Mutation] = []
        self.guard: Optional[ClearGuard] = None

        self._alive = True
        self._generation = 0
        self._applied_generation = 0
        self._fetch_buffers: dict[int, list[SessionEvent]] = {}
        self._pending_reads: dict[str, datetime] = {}

    @property
    def alive(self) -> bool:
        return self._alive

    def close(self) -> None:
        """Stop applying results; in-flight calls are ignored when they finish."""
        self._alive = False

    # Fetching

    async def initial_fetch(self) -> None:
        """Replace the list and counter with the server's view."""
        await self._fetch()

    async def resync(self) -> None:
        """Re-fetch from the server, keeping the clear guard and pending reads."""
        await self._fetch()

    async def _fetch(self) -> None:
        # Events arriving while this fetch is in flight are replayed over its
        # snapshot. A fetch older than one already applied is discarded.
        self._generation += 1
        generation = self._generation
        buffered: list[SessionEvent] = []
        self._fetch_buffers[generation] = buffered
        try:
            items = await self.client.list_visible(self.user_id)
            server_count = await self.client.unread_count(self.user_id)
        finally:
            del self._fetch_buffers[generation]
        if not self._alive:
            return
        if generation < self._applied_generation:
            logger.debug("Discarding superseded fetch for %s", self.user_id)
            return
        self._applied_generation = generation

        self._apply_snapshot(items)
        for event in buffered:
            if isinstance(event, RealtimeInsert):
                self._apply_insert(event.notification)
            else:
                self._apply_read_state(event)
        self.unread_count = self._count_unread()
        if self.unread_count != server_count:
            logger.debug(
                "Unread count for %s derived as %d, server reported %d",
                self.user_id, self.unread_count, server_count,
            )

    def _apply_snapshot(self, items: list[Notification]) -> None:
        guard = self.guard
        if guard is not None:
            suppressed = [n for n in items if guard.suppresses(n)]
            items = [n for n in items if not guard.suppresses(n)]
            if guard.confirmed and not suppressed:
                logger.debug("Clear guard released for %s", self.user_id)
                self.guard = None

        merged = []
        for n in items:
            pending = self._pending_reads.get(n.id)
            if pending is not None and n.read_at is None:
                n = n.with_read_at(pending)
            merged.append(n)
        self.notifications = merged

    def _count_unread(self) -> int:
        return sum(1 for n in self.notifications if n.read_at is None)

    # Realtime events

    async def handle_event(self, event: SessionEvent) -> None:
        """Merge one realtime event into the cache."""
        if not self._alive:
            return
        for buffered in self._fetch_buffers.values():
            buffered.append(event)
        if isinstance(event, RealtimeInsert):
            notification = event.notification
            if self._apply_insert(notification):
                self._alert(notification)
        elif isinstance(event, ReadStateChange):
            self._apply_read_state(event)

    def _apply_insert(self, notification: Notification) -> bool:
        if not notification.is_addressed_to(self.user_id):
            return False
        if any(n.id == notification.id for n in self.notifications):
            return False
        if self.guard is not None and self.guard.suppresses(notification):
            logger.debug("Suppressed cleared notification %s", notification.id)
            return False
        self.notifications.insert(0, notification)
        if notification.read_at is None:
            self.unread_count += 1
        return True

    def _apply_read_state(self, event: ReadStateChange) -> None:
        state = event.state
        if state.user_id != self.user_id:
            return
        for index, n in enumerate(self.notifications):
            if n.id != state.notification_id:
                continue
            if state.hidden_at is not None:
                del self.notifications[index]
                if n.read_at is None:
                    self.unread_count = max(self.unread_count - 1, 0)
            elif state.read_at is not None and n.read_at is None:
                self.notifications[index] = n.with_read_at(state.read_at)
                self.unread_count = max(self.unread_count - 1, 0)
            return

    def _alert(self, notification: Notification) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.play_alert(
                notification.type, alert_message(notification.type, notification.payload),
            )
        except Exception as exc:
            logger.warning("Notification alert failed: %s", exc)

    # Optimistic mutations

    async def mark_read(self, notification_id: str) -> Mutation:
        mutation = Mutation(kind=MutationKind.MARK_READ, notification_id=notification_id)
        self.mutations.append(mutation)

        now = self._clock()
        previous: Optional[Notification] = None
        for index, n in enumerate(self.notifications):
            if n.id == notification_id:
                previous = n
                if n.read_at is None:
                    self.notifications[index] = n.with_read_at(now)
                    self.unread_count = max(self.unread_count - 1, 0)
                    self._pending_reads[notification_id] = now
                break

        try:
            result = await self.client.mark_read(notification_id, self.user_id)
        except Exception as exc:
            mutation.revert(exc)
            self._pending_reads.pop(notification_id, None)
            if self._alive and previous is not None and previous.read_at is None:
                self._restore_unread(previous)
            self._report(mutation)
            return mutation

        self._pending_reads.pop(notification_id, None)
        mutation.confirm(result)
        return mutation

    def _restore_unread(self, previous: Notification) -> None:
        for index, n in enumerate(self.notifications):
            if n.id == previous.id:
                if n.read_at is not None:
                    self.notifications[index] = previous
                    self.unread_count += 1
                return

    async def clear_all(self) -> Mutation:
        mutation = Mutation(kind=MutationKind.CLEAR_ALL)
        self.mutations.append(mutation)

        guard = ClearGuard(
            watermark=self._clock(),
            cleared_ids=frozenset(n.id for n in self.notifications),
        )
        self.guard = guard
        self.notifications = []
        self.unread_count = 0

        try:
            result = await self.client.clear_all(self.user_id)
        except Exception as exc:
            mutation.revert(exc)
            if self.guard is guard:
                self.guard = None
            self._report(mutation)
            if self._alive:
                await self._resync_after_failure()
            return mutation

        mutation.confirm(result)
        if not self._alive:
            return mutation

        if not result.hidden:
            # Read-only fallback: entries stay listed, shown as read.
            if self.guard is guard:
                self.guard = None
            await self.resync()
        elif self.guard is guard:
            guard.watermark = result.snapshot_at
            guard.cleared_ids = guard.cleared_ids | frozenset(result.affected_ids)
            guard.confirmed = True
        return mutation

    async def _resync_after_failure(self) -> None:
        try:
            await self.resync()
        except Exception as exc:
            logger.warning("Resync after failed clear-all failed: %s", exc)

    def _report(self, mutation: Mutation) -> None:
        logger.warning(
            "%s failed for %s: %s", mutation.kind.value, self.user_id, mutation.error,
        )
        if self._on_error is not None and self._alive:
            try:
                self._on_error(mutation)
            except Exception as exc:
                logger.warning("Error callback failed: %s", exc)
