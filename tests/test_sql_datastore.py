"""Tests for the SQLAlchemy datastore and the schema migrations."""

import importlib.util
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect
from sqlalchemy.orm import sessionmaker

from src.db import Base, UserRecord, build_engine
from src.notifications.channels import PushChannels
from src.notifications.config import ChangeEventType, DevicePlatform, PushDeliveryStatus
from src.notifications.errors import DegradedSchema, StoreError
from src.notifications.models import (
    DevicePushTarget,
    Notification,
    NotificationPreferences,
    PushDeliveryLog,
    ReadState,
)
from src.notifications.read_state import ReadOnlyFallback, TombstoneHide
from src.notifications.service import NotificationService
from src.notifications.sql_datastore import SqlDatastore

VERSIONS = Path(__file__).parent.parent / "alembic" / "versions"


def load_revision(filename):
    spec = importlib.util.spec_from_file_location(filename[:-3], VERSIONS / filename)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def migrate(engine, *filenames, direction="upgrade"):
    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            for filename in filenames:
                getattr(load_revision(filename), direction)()


def add_users(engine, *user_ids, active=True):
    Session = sessionmaker(bind=engine)
    with Session() as session:
        for user_id in user_ids:
            session.add(UserRecord(id=user_id, is_active=active))
        session.commit()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(engine):
    return SqlDatastore(engine)


class TestSqlNotifications:
    """Tests for notification rows and visibility."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, sql_store):
        n = Notification(type="inventory.lowStock", payload={"itemName": "Glass 8mm", "stock": 3})
        await sql_store.insert_notification(n)

        loaded = await sql_store.get_notification(n.id)
        assert loaded.type == "inventory.lowStock"
        assert loaded.payload == {"itemName": "Glass 8mm", "stock": 3}
        assert loaded.created_at == n.created_at
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, sql_store):
        assert await sql_store.get_notification("missing") is None

    @pytest.mark.asyncio
    async def test_insert_published(self, sql_store):
        events = []

        async def handler(event):
            events.append(event)

        sql_store.change_feed.subscribe("notifications", [ChangeEventType.INSERT], handler)
        n = await sql_store.insert_notification(Notification(type="event.created"))
        assert [e.new.id for e in events] == [n.id]

    @pytest.mark.asyncio
    async def test_list_for_user(self, sql_store):
        base = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        await sql_store.insert_notification(Notification(type="event.created", id="g1", created_at=base))
        await sql_store.insert_notification(Notification(
            type="training.assigned", id="t1", created_at=base + timedelta(minutes=1),
            target_user_id="u-ana",
        ))
        await sql_store.insert_notification(Notification(
            type="training.assigned", id="t2", created_at=base + timedelta(minutes=2),
            target_user_id="u-bruno",
        ))

        assert [n.id for n in await sql_store.list_notifications_for("u-ana")] == ["t1", "g1"]
        assert [n.id for n in await sql_store.list_notifications_for("u-bruno")] == ["t2", "g1"]


class TestSqlReadState:
    """Tests for read-state upserts."""

    @pytest.mark.asyncio
    async def test_upsert_insert_then_update(self, sql_store):
        events = []

        async def handler(event):
            events.append(event.event_type)

        sql_store.change_feed.subscribe("notification_reads", list(ChangeEventType), handler)
        n = await sql_store.insert_notification(Notification(type="event.created"))
        now = datetime.now(timezone.utc)

        await sql_store.upsert_read_states([ReadState(n.id, "u-ana", read_at=now)])
        await sql_store.upsert_read_states([ReadState(n.id, "u-ana", read_at=now, hidden_at=now)])

        states = await sql_store.list_read_states("u-ana")
        assert len(states) == 1
        assert states[0].hidden_at == now
        assert events == [ChangeEventType.INSERT, ChangeEventType.UPDATE]

    @pytest.mark.asyncio
    async def test_empty_upsert(self, sql_store):
        await sql_store.upsert_read_states([])
        assert await sql_store.list_read_states("u-ana") == []


class TestSqlPreferencesAndDevices:
    """Tests for preferences, device targets and delivery logs."""

    @pytest.mark.asyncio
    async def test_preferences_insert_if_absent(self, sql_store):
        first = await sql_store.insert_preferences_if_absent(
            NotificationPreferences(user_id="u-ana", inventory_enabled=False)
        )
        second = await sql_store.insert_preferences_if_absent(NotificationPreferences(user_id="u-ana"))
        assert first.inventory_enabled is False
        assert second.inventory_enabled is False

    @pytest.mark.asyncio
    async def test_preferences_save(self, sql_store):
        prefs = NotificationPreferences(user_id="u-ana")
        await sql_store.insert_preferences_if_absent(prefs)
        prefs.push_enabled = False
        prefs.updated_at = datetime.now(timezone.utc)
        await sql_store.save_preferences(prefs)

        loaded = await sql_store.get_preferences("u-ana")
        assert loaded.push_enabled is False
        assert loaded.updated_at is not None

    @pytest.mark.asyncio
    async def test_device_upsert_reactivates(self, sql_store):
        target = DevicePushTarget(user_id="u-ana", platform=DevicePlatform.IOS, token="ExponentPushToken[a]")
        saved = await sql_store.upsert_device_target(target)
        assert await sql_store.deactivate_device_target(saved.id) is True
        assert await sql_store.list_device_targets("u-ana") == []

        again = await sql_store.upsert_device_target(DevicePushTarget(
            user_id="u-ana", platform=DevicePlatform.IOS, token="ExponentPushToken[a]", app_version="2.4.0",
        ))
        assert again.id == saved.id
        assert again.is_active is True
        assert again.app_version == "2.4.0"

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, sql_store):
        assert await sql_store.deactivate_device_target("missing") is False

    @pytest.mark.asyncio
    async def test_delivery_logs(self, sql_store):
        await sql_store.append_delivery_log(PushDeliveryLog(
            notification_id="n-1", user_id="u-ana", target_id="t-1",
            status=PushDeliveryStatus.SENT, token="ExponentPushToken[a...",
            platform=DevicePlatform.IOS, sent_at=datetime.now(timezone.utc),
        ))
        await sql_store.append_delivery_log(PushDeliveryLog(
            notification_id="n-2", user_id="u-bruno", target_id="t-2",
            status=PushDeliveryStatus.FAILED, error_code="DeviceNotRegistered",
        ))

        logs = await sql_store.list_delivery_logs(notification_id="n-1")
        assert [l.status for l in logs] == [PushDeliveryStatus.SENT]
        assert logs[0].platform == DevicePlatform.IOS
        assert len(await sql_store.list_delivery_logs(user_id="u-bruno")) == 1
        assert len(await sql_store.list_delivery_logs()) == 2

    @pytest.mark.asyncio
    async def test_active_users(self, engine, sql_store):
        add_users(engine, "u-bruno", "u-ana")
        add_users(engine, "u-gone", active=False)
        assert await sql_store.list_active_user_ids() == ["u-ana", "u-bruno"]


class TestSqlService:
    """The service over the SQL datastore."""

    @pytest.mark.asyncio
    async def test_clear_all_hides(self, engine, web_channel, mobile_channel):
        add_users(engine, "u-ana")
        service = NotificationService(
            datastore=SqlDatastore(engine),
            channels=PushChannels(mobile=mobile_channel, web=web_channel),
        )
        assert isinstance(service.read_state.strategy, TombstoneHide)

        n = await service.create_notification("inventory.lowStock", {"itemName": "Glass 8mm"})
        await service.drain()
        result = await service.clear_all("u-ana")

        assert result.affected_ids == frozenset({n.id})
        assert await service.list_visible("u-ana") == []
        await service.close()


class TestMigrations:
    """Tests for the schema revisions and the degraded hide path."""

    def test_upgrade_creates_tables(self):
        engine = build_engine("sqlite://")
        migrate(engine, "001_initial_schema.py", "002_notification_reads_hidden_at.py")
        tables = set(inspect(engine).get_table_names())
        assert {"users", "notifications", "notification_reads", "device_tokens",
                "notification_preferences", "push_delivery_logs"} <= tables
        assert SqlDatastore(engine).supports_hidden_state() is True

    @pytest.mark.asyncio
    async def test_schema_without_hidden_column(self):
        """Before 002 the hide column is missing and clear-all marks read only."""
        engine = build_engine("sqlite://")
        migrate(engine, "001_initial_schema.py")
        datastore = SqlDatastore(engine)
        assert datastore.supports_hidden_state() is False

        now = datetime.now(timezone.utc)
        n = await datastore.insert_notification(Notification(type="event.created"))
        with pytest.raises(DegradedSchema):
            await datastore.upsert_read_states([ReadState(n.id, "u-ana", read_at=now, hidden_at=now)])

        service = NotificationService(datastore=datastore)
        assert isinstance(service.read_state.strategy, ReadOnlyFallback)
        result = await service.clear_all("u-ana")
        assert result.hidden is False
        visible = await service.list_visible("u-ana")
        assert [v.id for v in visible] == [n.id]
        assert visible[0].read_at is not None
        assert await service.unread_count("u-ana") == 0

    def test_unmigrated_database(self):
        engine = build_engine("sqlite://")
        with pytest.raises(StoreError):
            SqlDatastore(engine)

    def test_downgrade_removes_hidden_column(self):
        engine = build_engine("sqlite://")
        migrate(engine, "001_initial_schema.py", "002_notification_reads_hidden_at.py")
        migrate(engine, "002_notification_reads_hidden_at.py", direction="downgrade")
        columns = {c["name"] for c in inspect(engine).get_columns("notification_reads")}
        assert "hidden_at" not in columns
