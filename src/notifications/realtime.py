"""Realtime fan-out of notification changes to connected sessions."""

import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from src.notifications.changefeed import ChangeFeed, Subscription
from src.notifications.config import ChangeEventType, NOTIFICATIONS_TABLE, READS_TABLE
from src.notifications.models import ChangeEvent, Notification, ReadState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeInsert:
    """A new notification addressed to the session's user."""

    notification: Notification


@dataclass(frozen=True)
class ReadStateChange:
    """A read-state row of the session's user was written."""

    state: ReadState
    event_type: ChangeEventType = ChangeEventType.UPDATE


SessionEvent = Union[RealtimeInsert, ReadStateChange]
SessionSink = Callable[[SessionEvent], Awaitable[None]]


class FanoutSession:
    """One connected client session.

    Delivery is at-least-once while open; nothing is buffered while closed.
    """

    def __init__(self, feed: ChangeFeed, user_id: str, sink: SessionSink):
        self.session_id = uuid.uuid4().hex[:16]
        self.user_id = user_id
        self._feed = feed
        self._sink = sink
        self._subscriptions: list[Subscription] = []
        self.events_delivered = 0
        self.events_failed = 0

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions)

    def _subscribe(self) -> None:
        user_id = self.user_id
        self._subscriptions = [
            self._feed.subscribe(
                NOTIFICATIONS_TABLE,
                [ChangeEventType.INSERT],
                self._on_notification,
                filter_fn=lambda e: e.new.is_addressed_to(user_id),
            ),
            self._feed.subscribe(
                READS_TABLE,
                [ChangeEventType.INSERT, ChangeEventType.UPDATE],
                self._on_read_state,
                filter_fn=lambda e: e.new.user_id == user_id,
            ),
        ]

    def _unsubscribe(self) -> None:
        for sub in self._subscriptions:
            self._feed.unsubscribe(sub.subscription_id)
        self._subscriptions = []

    async def _on_notification(self, event: ChangeEvent) -> None:
        await self._emit(RealtimeInsert(notification=event.new.with_read_at(None)))

    async def _on_read_state(self, event: ChangeEvent) -> None:
        await self._emit(ReadStateChange(state=event.new, event_type=event.event_type))

    async def _emit(self, event: SessionEvent) -> None:
        try:
            await self._sink(event)
        except Exception as exc:
            self.events_failed += 1
            logger.warning("Session %s sink failed: %s", self.session_id, exc)
            return
        self.events_delivered += 1

    def switch_user(self, user_id: str) -> None:
        """Re-subscribe the session for a different user."""
        self._unsubscribe()
        self.user_id = user_id
        self._subscribe()
        logger.info("Session %s switched to user %s", self.session_id, user_id)

    def close(self) -> None:
        self._unsubscribe()
        logger.debug("Session %s closed", self.session_id)


class RealtimeFanout:
    """Opens change-feed sessions for connected users."""

    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self._sessions: dict[str, FanoutSession] = {}

    def open_session(self, user_id: str, sink: SessionSink) -> FanoutSession:
        # Drop sessions their owners already closed.
        self._sessions = {k: s for k, s in self._sessions.items() if s.is_open}
        session = FanoutSession(self.feed, user_id, sink)
        session._subscribe()
        self._sessions[session.session_id] = session
        logger.info("Session %s opened for %s", session.session_id, user_id)
        return session

    def close_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def get_session(self, session_id: str) -> Optional[FanoutSession]:
        return self._sessions.get(session_id)

    @property
    def active_sessions(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_open)
