"""Tests for the change feed and realtime session fan-out."""

import pytest

from src.notifications.changefeed import ChangeFeed
from src.notifications.config import ChangeEventType, NOTIFICATIONS_TABLE, READS_TABLE
from src.notifications.datastore import InMemoryDatastore
from src.notifications.models import ChangeEvent, Notification, ReadState
from src.notifications.realtime import ReadStateChange, RealtimeFanout, RealtimeInsert
from src.notifications.store import NotificationStore
from src.notifications.read_state import ReadStateTracker


class Recorder:
    """Async sink collecting delivered events."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def insert_event(notification):
    return ChangeEvent(table=NOTIFICATIONS_TABLE, event_type=ChangeEventType.INSERT, new=notification)


class TestChangeFeed:
    """Tests for table-based publish/subscribe."""

    def setup_method(self):
        self.feed = ChangeFeed()

    @pytest.mark.asyncio
    async def test_table_and_event_type_matching(self):
        notifications = Recorder()
        reads = Recorder()
        self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], notifications)
        self.feed.subscribe(READS_TABLE, [ChangeEventType.UPDATE], reads)

        delivered = await self.feed.publish(insert_event(Notification(type="event.created")))
        assert delivered == 1
        assert len(notifications.events) == 1
        assert reads.events == []

        await self.feed.publish(ChangeEvent(
            table=READS_TABLE, event_type=ChangeEventType.INSERT, new=ReadState("n-1", "u-ana"),
        ))
        assert reads.events == []

    @pytest.mark.asyncio
    async def test_wildcard_pattern(self):
        everything = Recorder()
        self.feed.subscribe("*", list(ChangeEventType), everything)
        await self.feed.publish(insert_event(Notification(type="event.created")))
        await self.feed.publish(ChangeEvent(
            table=READS_TABLE, event_type=ChangeEventType.UPDATE, new=ReadState("n-1", "u-ana"),
        ))
        assert len(everything.events) == 2

    @pytest.mark.asyncio
    async def test_filter(self):
        ana = Recorder()
        self.feed.subscribe(
            NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], ana,
            filter_fn=lambda e: e.new.is_addressed_to("u-ana"),
        )
        await self.feed.publish(insert_event(Notification(type="training.assigned", target_user_id="u-bruno")))
        await self.feed.publish(insert_event(Notification(type="training.assigned", target_user_id="u-ana")))
        assert [e.new.target_user_id for e in ana.events] == ["u-ana"]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self):
        """One broken subscriber does not block the others."""
        async def broken(event):
            raise RuntimeError("socket closed")

        healthy = Recorder()
        bad = self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], broken)
        self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], healthy)

        delivered = await self.feed.publish(insert_event(Notification(type="event.created")))
        assert delivered == 1
        assert len(healthy.events) == 1
        assert bad.events_failed == 1

    @pytest.mark.asyncio
    async def test_failing_filter_skips_subscriber(self):
        recorder = Recorder()
        self.feed.subscribe(
            NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], recorder,
            filter_fn=lambda e: e.new.missing_attribute,
        )
        assert await self.feed.publish(insert_event(Notification(type="event.created"))) == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unsubscribe_during_publish(self):
        first_calls = []
        second = Recorder()

        async def first(event):
            first_calls.append(event)
            self.feed.unsubscribe(second_sub.subscription_id)

        self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], first)
        second_sub = self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], second)

        await self.feed.publish(insert_event(Notification(type="event.created")))
        assert len(first_calls) == 1
        assert second.events == []

    @pytest.mark.asyncio
    async def test_statistics(self):
        self.feed.subscribe(NOTIFICATIONS_TABLE, [ChangeEventType.INSERT], Recorder())
        await self.feed.publish(insert_event(Notification(type="event.created")))
        stats = self.feed.get_statistics()
        assert stats == {"subscriptions": 1, "published": 1, "delivered": 1}


class TestRealtimeFanout:
    """Tests for per-user sessions over the datastore change feed."""

    def setup_method(self):
        self.datastore = InMemoryDatastore()
        self.store = NotificationStore(self.datastore)
        self.tracker = ReadStateTracker(self.store)
        self.fanout = RealtimeFanout(self.datastore.change_feed)

    @pytest.mark.asyncio
    async def test_global_insert_reaches_every_session(self):
        ana, bruno = Recorder(), Recorder()
        self.fanout.open_session("u-ana", ana)
        self.fanout.open_session("u-bruno", bruno)

        n = await self.store.create("inventory.lowStock", {"itemName": "Glass 8mm"})

        for recorder in (ana, bruno):
            assert len(recorder.events) == 1
            event = recorder.events[0]
            assert isinstance(event, RealtimeInsert)
            assert event.notification.id == n.id

    @pytest.mark.asyncio
    async def test_targeted_insert_reaches_owner_only(self):
        ana, bruno = Recorder(), Recorder()
        self.fanout.open_session("u-ana", ana)
        self.fanout.open_session("u-bruno", bruno)

        await self.store.create("training.assigned", {}, target_user_id="u-bruno")
        assert ana.events == []
        assert len(bruno.events) == 1

    @pytest.mark.asyncio
    async def test_read_state_changes(self):
        """Own read-state writes arrive as INSERT then UPDATE."""
        ana, bruno = Recorder(), Recorder()
        self.fanout.open_session("u-ana", ana)
        self.fanout.open_session("u-bruno", bruno)
        n = await self.store.create("inventory.lowStock", {})

        await self.tracker.mark_read(n.id, "u-ana")
        await self.tracker.clear_all("u-ana")

        changes = [e for e in ana.events if isinstance(e, ReadStateChange)]
        assert [c.event_type for c in changes] == [ChangeEventType.INSERT, ChangeEventType.UPDATE]
        assert changes[1].state.hidden_at is not None
        assert not any(isinstance(e, ReadStateChange) for e in bruno.events)

    @pytest.mark.asyncio
    async def test_closed_session_receives_nothing(self):
        ana = Recorder()
        session = self.fanout.open_session("u-ana", ana)
        assert self.fanout.close_session(session.session_id) is True
        assert not session.is_open

        await self.store.create("inventory.lowStock", {})
        assert ana.events == []
        assert self.fanout.active_sessions == 0
        assert self.fanout.close_session(session.session_id) is False

    @pytest.mark.asyncio
    async def test_switch_user(self):
        recorder = Recorder()
        session = self.fanout.open_session("u-ana", recorder)
        session.switch_user("u-bruno")

        await self.store.create("training.assigned", {}, target_user_id="u-ana")
        await self.store.create("training.assigned", {}, target_user_id="u-bruno")

        assert session.user_id == "u-bruno"
        assert [e.notification.target_user_id for e in recorder.events] == ["u-bruno"]
        assert len(self.datastore.change_feed.subscriptions) == 2

    @pytest.mark.asyncio
    async def test_failing_sink_counted(self):
        async def broken(event):
            raise ConnectionError("client went away")

        session = self.fanout.open_session("u-ana", broken)
        healthy = Recorder()
        self.fanout.open_session("u-bruno", healthy)

        await self.store.create("inventory.lowStock", {})
        assert session.events_failed == 1
        assert len(healthy.events) == 1

    def test_get_session(self):
        session = self.fanout.open_session("u-ana", Recorder())
        assert self.fanout.get_session(session.session_id) is session
        assert self.fanout.active_sessions == 1
