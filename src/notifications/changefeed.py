"""Row-change feed: table-based publish/subscribe for realtime delivery.

Handlers are coroutines. A failing handler is logged and counted against its
subscription; it never prevents delivery to the other subscribers.
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from src.notifications.config import ChangeEventType
from src.notifications.models import ChangeEvent

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscriber to change events on one table pattern."""

    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    table_pattern: str = "*"
    event_types: frozenset = frozenset(ChangeEventType)
    handler: Optional[ChangeHandler] = None
    filter_fn: Optional[Callable[[ChangeEvent], bool]] = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    events_received: int = 0
    events_failed: int = 0

    def matches(self, event: ChangeEvent) -> bool:
        if event.event_type not in self.event_types:
            return False
        return self.table_pattern == "*" or fnmatch.fnmatch(event.table, self.table_pattern)


class ChangeFeed:
    """In-process realtime channel carrying datastore row changes."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._published_count: int = 0
        self._delivered_count: int = 0

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    def subscribe(
        self,
        table_pattern: str,
        event_types: Iterable[ChangeEventType],
        handler: ChangeHandler,
        filter_fn: Optional[Callable[[ChangeEvent], bool]] = None,
    ) -> Subscription:
        """Register a handler for change events on matching tables."""
        sub = Subscription(
            table_pattern=table_pattern,
            event_types=frozenset(event_types),
            handler=handler,
            filter_fn=filter_fn,
        )
        self._subscriptions[sub.subscription_id] = sub
        return sub

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription."""
        return self._subscriptions.pop(subscription_id, None) is not None

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription.

        Returns the number of successful deliveries.
        """
        self._published_count += 1
        delivered = 0

        # Snapshot: handlers may subscribe or unsubscribe while we iterate.
        for sub in list(self._subscriptions.values()):
            if sub.subscription_id not in self._subscriptions:
                continue
            if not sub.matches(event):
                continue

            if sub.filter_fn is not None:
                try:
                    if not sub.filter_fn(event):
                        continue
                except Exception:
                    logger.exception(
                        "Change filter failed for subscription %s", sub.subscription_id
                    )
                    continue

            if await self._deliver(event, sub):
                delivered += 1

        return delivered

    async def _deliver(self, event: ChangeEvent, sub: Subscription) -> bool:
        if sub.handler is None:
            return False
        try:
            await sub.handler(event)
        except Exception as exc:
            sub.events_failed += 1
            logger.warning(
                "Change handler %s failed on %s %s: %s",
                sub.subscription_id, event.table, event.event_type.value, exc,
            )
            return False
        sub.events_received += 1
        self._delivered_count += 1
        return True

    def get_statistics(self) -> dict:
        return {
            "subscriptions": len(self._subscriptions),
            "published": self._published_count,
            "delivered": self._delivered_count,
        }
