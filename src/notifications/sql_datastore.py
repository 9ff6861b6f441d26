"""SQL datastore backed by SQLAlchemy.

Sessions are blocking, so every call runs in a worker thread. Change events
are published on the attached ChangeFeed after the transaction commits.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import inspect, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from src.db.engine import get_sync_session_factory
from src.db.models import (
    DeviceTokenRecord,
    NotificationPreferenceRecord,
    NotificationReadRecord,
    NotificationRecord,
    PushDeliveryLogRecord,
    UserRecord,
)
from src.notifications.changefeed import ChangeFeed
from src.notifications.config import (
    ChangeEventType,
    DevicePlatform,
    NOTIFICATIONS_TABLE,
    PushDeliveryStatus,
    READS_TABLE,
)
from src.notifications.errors import DegradedSchema, StoreError
from src.notifications.models import (
    ChangeEvent,
    DevicePushTarget,
    Notification,
    NotificationPreferences,
    PushDeliveryLog,
    ReadState,
)

logger = logging.getLogger(__name__)

_reads = NotificationReadRecord.__table__
_prefs = NotificationPreferenceRecord.__table__
_devices = DeviceTokenRecord.__table__


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_notification(row: NotificationRecord) -> Notification:
    return Notification(
        id=row.id,
        type=row.type,
        payload=dict(row.payload_json or {}),
        created_at=_utc(row.created_at),
        created_by_system=row.created_by_system,
        target_user_id=row.target_user_id,
    )


def _to_preferences(row) -> NotificationPreferences:
    return NotificationPreferences(
        user_id=row.user_id,
        push_enabled=row.push_enabled,
        work_orders_enabled=row.work_orders_enabled,
        inventory_enabled=row.inventory_enabled,
        training_enabled=row.training_enabled,
        blood_priority_enabled=row.blood_priority_enabled,
        production_enabled=row.production_enabled,
        events_enabled=row.events_enabled,
        created_at=_utc(row.created_at) or datetime.now(timezone.utc),
        updated_at=_utc(row.updated_at),
    )


def _to_target(row: DeviceTokenRecord) -> DevicePushTarget:
    return DevicePushTarget(
        id=row.id,
        user_id=row.user_id,
        platform=DevicePlatform(row.platform),
        token=row.token,
        device_id=row.device_id,
        app_version=row.app_version,
        is_active=row.is_active,
        created_at=_utc(row.created_at) or datetime.now(timezone.utc),
        last_seen_at=_utc(row.last_seen_at),
    )


def _to_log(row: PushDeliveryLogRecord) -> PushDeliveryLog:
    return PushDeliveryLog(
        id=row.id,
        notification_id=row.notification_id,
        user_id=row.user_id,
        target_id=row.device_token_id,
        token=row.token or "",
        platform=DevicePlatform(row.platform) if row.platform else None,
        status=PushDeliveryStatus(row.status),
        error_code=row.error_code,
        error_message=row.error_message,
        sent_at=_utc(row.sent_at),
        delivered_at=_utc(row.delivered_at),
        created_at=_utc(row.created_at),
    )


class SqlDatastore:
    """Datastore over a relational database."""

    def __init__(self, engine, change_feed: Optional[ChangeFeed] = None):
        self.engine = engine
        self._session_factory = get_sync_session_factory(engine)
        self._change_feed = change_feed or ChangeFeed()
        self._hidden_supported = self._probe_hidden_column()

    @property
    def change_feed(self) -> ChangeFeed:
        return self._change_feed

    def _probe_hidden_column(self) -> bool:
        try:
            columns = {c["name"] for c in inspect(self.engine).get_columns(READS_TABLE)}
        except SQLAlchemyError as exc:
            logger.error("Cannot inspect %s: %s", READS_TABLE, exc)
            raise StoreError(f"Cannot inspect {READS_TABLE}: {exc}") from exc
        supported = "hidden_at" in columns
        if not supported:
            logger.warning("%s.hidden_at is missing, hide is degraded", READS_TABLE)
        return supported

    def supports_hidden_state(self) -> bool:
        return self._hidden_supported

    def _insert(self, table):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise StoreError(f"Upserts are not supported on dialect {dialect!r}")

    async def _run(self, fn):
        def work():
            with self._session_factory() as session:
                try:
                    result = fn(session)
                    session.commit()
                    return result
                except Exception:
                    session.rollback()
                    raise

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as exc:
            logger.error("Database operation failed: %s", exc)
            raise StoreError(f"Database operation failed: {exc}") from exc

    # Notifications

    async def insert_notification(self, notification: Notification) -> Notification:
        def work(session):
            session.add(NotificationRecord(
                id=notification.id,
                type=notification.type,
                payload_json=dict(notification.payload),
                created_at=notification.created_at,
                created_by_system=notification.created_by_system,
                target_user_id=notification.target_user_id,
            ))

        await self._run(work)
        stored = notification.with_read_at(None)
        await self._change_feed.publish(
            ChangeEvent(table=NOTIFICATIONS_TABLE, event_type=ChangeEventType.INSERT, new=stored)
        )
        return stored

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        def work(session):
            row = session.get(NotificationRecord, notification_id)
            return _to_notification(row) if row else None

        return await self._run(work)

    async def list_notifications_for(self, user_id: str) -> list[Notification]:
        def work(session):
            rows = session.execute(
                select(NotificationRecord)
                .where(
                    (NotificationRecord.target_user_id.is_(None))
                    | (NotificationRecord.target_user_id == user_id)
                )
                .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
            ).scalars()
            return [_to_notification(r) for r in rows]

        return await self._run(work)

    # Read state

    def _read_columns(self):
        cols = [_reads.c.notification_id, _reads.c.user_id, _reads.c.read_at]
        if self._hidden_supported:
            cols.append(_reads.c.hidden_at)
        return cols

    async def list_read_states(self, user_id: str) -> list[ReadState]:
        def work(session):
            rows = session.execute(
                select(*self._read_columns()).where(_reads.c.user_id == user_id)
            ).all()
            return [
                ReadState(
                    notification_id=r.notification_id,
                    user_id=r.user_id,
                    read_at=_utc(r.read_at),
                    hidden_at=_utc(r.hidden_at) if self._hidden_supported else None,
                )
                for r in rows
            ]

        return await self._run(work)

    async def upsert_read_states(self, states: list[ReadState]) -> None:
        if not states:
            return
        if not self._hidden_supported and any(s.hidden_at for s in states):
            raise DegradedSchema()

        def work(session):
            keys = [s.notification_id for s in states]
            existing = {
                r.notification_id
                for r in session.execute(
                    select(_reads.c.notification_id).where(
                        _reads.c.user_id.in_(sorted({s.user_id for s in states})),
                        _reads.c.notification_id.in_(keys),
                    )
                )
            }
            rows = []
            for s in states:
                row = {"notification_id": s.notification_id, "user_id": s.user_id, "read_at": s.read_at}
                if self._hidden_supported:
                    row["hidden_at"] = s.hidden_at
                rows.append(row)
            stmt = self._insert(_reads).values(rows)
            set_ = {"read_at": stmt.excluded.read_at}
            if self._hidden_supported:
                set_["hidden_at"] = stmt.excluded.hidden_at
            session.execute(stmt.on_conflict_do_update(
                index_elements=[_reads.c.notification_id, _reads.c.user_id], set_=set_,
            ))
            return existing

        existing = await self._run(work)
        for state in states:
            await self._change_feed.publish(ChangeEvent(
                table=READS_TABLE,
                event_type=(
                    ChangeEventType.UPDATE if state.notification_id in existing
                    else ChangeEventType.INSERT
                ),
                new=state,
            ))

    # Preferences

    async def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        def work(session):
            row = session.get(NotificationPreferenceRecord, user_id)
            return _to_preferences(row) if row else None

        return await self._run(work)

    async def insert_preferences_if_absent(
        self, prefs: NotificationPreferences,
    ) -> NotificationPreferences:
        def work(session):
            values = {flag: getattr(prefs, flag) for flag in NotificationPreferences.FLAGS}
            session.execute(
                self._insert(_prefs)
                .values(user_id=prefs.user_id, created_at=prefs.created_at, **values)
                .on_conflict_do_nothing(index_elements=[_prefs.c.user_id])
            )
            session.flush()
            return _to_preferences(session.get(NotificationPreferenceRecord, prefs.user_id))

        return await self._run(work)

    async def save_preferences(self, prefs: NotificationPreferences) -> NotificationPreferences:
        def work(session):
            values = {flag: getattr(prefs, flag) for flag in NotificationPreferences.FLAGS}
            stmt = self._insert(_prefs).values(
                user_id=prefs.user_id,
                created_at=prefs.created_at,
                updated_at=prefs.updated_at,
                **values,
            )
            session.execute(stmt.on_conflict_do_update(
                index_elements=[_prefs.c.user_id],
                set_={**values, "updated_at": prefs.updated_at},
            ))

        await self._run(work)
        return prefs

    # Device targets

    async def upsert_device_target(self, target: DevicePushTarget) -> DevicePushTarget:
        def work(session):
            last_seen = target.last_seen_at or datetime.now(timezone.utc)
            stmt = self._insert(_devices).values(
                id=target.id,
                user_id=target.user_id,
                platform=target.platform.value,
                token=target.token,
                device_id=target.device_id,
                app_version=target.app_version,
                is_active=True,
                created_at=target.created_at,
                last_seen_at=last_seen,
            )
            session.execute(stmt.on_conflict_do_update(
                index_elements=[_devices.c.user_id, _devices.c.token, _devices.c.platform],
                set_={
                    "is_active": True,
                    "last_seen_at": last_seen,
                    "device_id": stmt.excluded.device_id,
                    "app_version": stmt.excluded.app_version,
                },
            ))
            session.flush()
            row = session.execute(
                select(DeviceTokenRecord).where(
                    DeviceTokenRecord.user_id == target.user_id,
                    DeviceTokenRecord.token == target.token,
                    DeviceTokenRecord.platform == target.platform.value,
                )
            ).scalar_one()
            session.refresh(row)
            return _to_target(row)

        return await self._run(work)

    async def list_device_targets(
        self, user_id: str, active_only: bool = True,
    ) -> list[DevicePushTarget]:
        def work(session):
            query = select(DeviceTokenRecord).where(DeviceTokenRecord.user_id == user_id)
            if active_only:
                query = query.where(DeviceTokenRecord.is_active.is_(True))
            return [_to_target(r) for r in session.execute(query).scalars()]

        return await self._run(work)

    async def deactivate_device_target(self, target_id: str) -> bool:
        def work(session):
            result = session.execute(
                update(DeviceTokenRecord)
                .where(DeviceTokenRecord.id == target_id)
                .values(is_active=False)
            )
            return result.rowcount > 0

        return await self._run(work)

    # Delivery logs

    async def append_delivery_log(self, log: PushDeliveryLog) -> PushDeliveryLog:
        def work(session):
            session.add(PushDeliveryLogRecord(
                id=log.id,
                notification_id=log.notification_id,
                user_id=log.user_id,
                device_token_id=log.target_id,
                token=log.token,
                platform=log.platform.value if log.platform else None,
                status=log.status.value,
                error_code=log.error_code,
                error_message=log.error_message,
                sent_at=log.sent_at,
                delivered_at=log.delivered_at,
                created_at=log.created_at,
            ))

        await self._run(work)
        return log

    async def list_delivery_logs(
        self,
        notification_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[PushDeliveryLog]:
        def work(session):
            query = select(PushDeliveryLogRecord).order_by(PushDeliveryLogRecord.created_at)
            if notification_id is not None:
                query = query.where(PushDeliveryLogRecord.notification_id == notification_id)
            if user_id is not None:
                query = query.where(PushDeliveryLogRecord.user_id == user_id)
            return [_to_log(r) for r in session.execute(query).scalars()]

        return await self._run(work)

    # User directory

    async def list_active_user_ids(self) -> list[str]:
        def work(session):
            return list(session.execute(
                select(UserRecord.id).where(UserRecord.is_active.is_(True)).order_by(UserRecord.id)
            ).scalars())

        return await self._run(work)
