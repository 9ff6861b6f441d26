"""Tests for the notifications HTTP and WebSocket API."""

import logging

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.api import create_app
from src.api.config import APIConfig
from src.api.routes.notifications_ws import serialize_event
from src.logging_config.context import get_context_dict
from src.notifications.config import ChangeEventType
from src.notifications.models import Notification, ReadState
from src.notifications.realtime import ReadStateChange, RealtimeInsert

ANA = {"X-User-Id": "u-ana"}
BRUNO = {"X-User-Id": "u-bruno"}


class ContextCapture(logging.Handler):
    """Records the bound log context of each record as it is emitted."""

    def __init__(self):
        super().__init__(level=logging.INFO)
        self.contexts = []

    def emit(self, record):
        self.contexts.append(get_context_dict())


@pytest.fixture
def stream_logs():
    stream_logger = logging.getLogger("src.api.routes.notifications_ws")
    handler = ContextCapture()
    previous = stream_logger.level
    stream_logger.setLevel(logging.INFO)
    stream_logger.addHandler(handler)
    yield handler
    stream_logger.removeHandler(handler)
    stream_logger.setLevel(previous)


@pytest.fixture
def client(service):
    app = create_app(service=service)
    with TestClient(app) as client:
        yield client


def create(client, type="inventory.lowStock", payload=None, target_user_id=None):
    response = client.post("/notifications", json={
        "type": type,
        "payload": payload if payload is not None else {"itemId": "it-7", "itemName": "Glass 8mm", "stock": 3},
        "target_user_id": target_user_id,
    })
    assert response.status_code == 201
    return response.json()


class TestHealth:
    """Tests for the health endpoint and middleware."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["hide_strategy"] == "tombstone"

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"

    def test_request_id_propagated(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        resp = client.get("/health")
        assert resp.headers.get("X-Request-ID")

    def test_custom_config(self, service):
        app = create_app(service=service, config=APIConfig(title="Glassline Ops", version="9.9.9"))
        with TestClient(app) as client:
            assert client.get("/health").json()["version"] == "9.9.9"


class TestNotificationRoutes:
    """Tests for listing, reading and clearing notifications."""

    def test_requires_user(self, client):
        assert client.get("/notifications").status_code == 401

    def test_create_and_list(self, client):
        created = create(client)
        assert created["text"] == "Glass 8mm - Low stock"
        assert created["target_user_id"] is None

        resp = client.get("/notifications", headers=ANA)
        assert resp.status_code == 200
        data = resp.json()
        assert [n["id"] for n in data["notifications"]] == [created["id"]]
        assert data["unread_count"] == 1

    def test_create_rejects_malformed_type(self, client):
        resp = client.post("/notifications", json={"type": "lowStock", "payload": {}})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "type"

    def test_create_requires_type(self, client):
        resp = client.post("/notifications", json={"payload": {}})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_targeted_visibility(self, client):
        create(client, "training.assigned", {"trainingTitle": "Forklift safety"}, target_user_id="u-bruno")
        assert client.get("/notifications", headers=ANA).json()["notifications"] == []
        listed = client.get("/notifications", headers=BRUNO).json()["notifications"]
        assert listed[0]["text"] == "New training: Forklift safety"

    def test_mark_read(self, client):
        created = create(client)
        resp = client.post(f"/notifications/{created['id']}/read", headers=ANA)
        assert resp.status_code == 200
        assert resp.json()["read_at"] is not None

        assert client.get("/notifications/unread-count", headers=ANA).json() == {"unread_count": 0}
        assert client.get("/notifications/unread-count", headers=BRUNO).json() == {"unread_count": 1}

    def test_mark_read_other_users_notification(self, client):
        created = create(client, "training.assigned", {}, target_user_id="u-bruno")
        resp = client.post(f"/notifications/{created['id']}/read", headers=ANA)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOTIFICATION_NOT_FOUND"

    def test_clear_all(self, client):
        first = create(client)
        second = create(client, "event.created", {"title": "Safety drill"})

        resp = client.post("/notifications/clear", headers=ANA)
        assert resp.status_code == 200
        data = resp.json()
        assert data["hidden"] is True
        assert sorted(data["affected_ids"]) == sorted([first["id"], second["id"]])

        assert client.get("/notifications", headers=ANA).json()["notifications"] == []
        assert len(client.get("/notifications", headers=BRUNO).json()["notifications"]) == 2

    def test_deliveries(self, client, service):
        client.post("/devices", headers=ANA, json={"platform": "ios", "token": "ExponentPushToken[ana]"})
        created = create(client)
        client.portal.call(service.drain)

        resp = client.get(f"/notifications/{created['id']}/deliveries", headers=ANA)
        assert resp.status_code == 200
        logs = resp.json()
        assert len(logs) == 1
        assert logs[0]["status"] == "sent"
        assert logs[0]["user_id"] == "u-ana"

    def test_deliveries_scoped_to_caller(self, client, service):
        client.post("/devices", headers=ANA, json={"platform": "ios", "token": "ExponentPushToken[ana]"})
        created = create(client)
        client.portal.call(service.drain)

        assert client.get(f"/notifications/{created['id']}/deliveries").status_code == 401
        resp = client.get(f"/notifications/{created['id']}/deliveries", headers=BRUNO)
        assert resp.status_code == 200
        assert resp.json() == []


class TestDeviceRoutes:
    """Tests for device registration."""

    def test_register(self, client):
        resp = client.post("/devices", headers=ANA, json={
            "platform": "android", "token": "ExponentPushToken[ana]", "app_version": "2.4.0",
        })
        assert resp.status_code == 201
        assert resp.json()["is_active"] is True

        devices = client.get("/devices", headers=ANA).json()
        assert [d["platform"] for d in devices] == ["android"]
        assert client.get("/devices", headers=BRUNO).json() == []

    def test_unknown_platform(self, client):
        resp = client.post("/devices", headers=ANA, json={"platform": "blackberry", "token": "x"})
        assert resp.status_code == 422


class TestPreferenceRoutes:
    """Tests for push preferences."""

    def test_defaults(self, client):
        resp = client.get("/notification-preferences", headers=ANA)
        assert resp.status_code == 200
        data = resp.json()
        assert data["push_enabled"] is True
        assert data["updated_at"] is None

    def test_patch(self, client):
        resp = client.patch("/notification-preferences", headers=ANA, json={"inventory_enabled": False})
        assert resp.status_code == 200
        assert resp.json()["inventory_enabled"] is False
        assert resp.json()["work_orders_enabled"] is True

        again = client.get("/notification-preferences", headers=ANA).json()
        assert again["inventory_enabled"] is False

    def test_patch_rejects_non_boolean(self, client):
        resp = client.patch("/notification-preferences", headers=ANA, json={"push_enabled": "sometimes"})
        assert resp.status_code == 422


class TestNotificationStream:
    """Tests for the realtime WebSocket."""

    def test_requires_user(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/notifications/ws"):
                pass
        assert exc_info.value.code == 4001

    def test_insert_streamed(self, client):
        with client.websocket_connect("/notifications/ws", headers=ANA) as ws:
            hello = ws.receive_json()
            assert hello["event"] == "connected"

            created = create(client)
            message = ws.receive_json()
            assert message["event"] == "notification.insert"
            assert message["notification"]["id"] == created["id"]
            assert message["notification"]["text"] == "Glass 8mm - Low stock"

    def test_read_state_streamed(self, client):
        created = create(client)
        with client.websocket_connect("/notifications/ws?user_id=u-ana") as ws:
            ws.receive_json()
            client.post(f"/notifications/{created['id']}/read", headers=ANA)
            message = ws.receive_json()
            assert message["event"] == "read_state"
            assert message["change"] == "INSERT"
            assert message["state"]["notification_id"] == created["id"]

    def test_log_context_carries_request_id(self, stream_logs, client):
        headers = {**ANA, "X-Request-ID": "req-ws-1"}
        with client.websocket_connect("/notifications/ws", headers=headers) as ws:
            hello = ws.receive_json()

        context = stream_logs.contexts[0]
        assert context["request_id"] == "req-ws-1"
        assert context["user_id"] == "u-ana"
        assert context["session_id"] == hello["session_id"]

    def test_log_context_generates_request_id(self, stream_logs, client):
        with client.websocket_connect("/notifications/ws", headers=ANA) as ws:
            ws.receive_json()
        assert stream_logs.contexts[0]["request_id"]

    def test_actions(self, client):
        with client.websocket_connect("/notifications/ws", headers=ANA) as ws:
            ws.receive_json()
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"event": "pong"}

            ws.send_json({"action": "switch_user", "user_id": "u-bruno"})
            assert ws.receive_json() == {"event": "switched", "user_id": "u-bruno"}

            ws.send_json({"action": "dance"})
            assert ws.receive_json()["event"] == "error"

            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "message": "Invalid JSON"}

    def test_session_closed_on_disconnect(self, client, service):
        with client.websocket_connect("/notifications/ws", headers=ANA) as ws:
            ws.receive_json()
            assert service.fanout.active_sessions == 1
        create(client)
        assert service.fanout.active_sessions == 0


class TestSerializeEvent:
    """Tests for WebSocket message shapes."""

    def test_insert(self):
        n = Notification(type="bloodPriority.new", payload={"title": "O- donors needed"})
        message = serialize_event(RealtimeInsert(n))
        assert message["event"] == "notification.insert"
        assert message["notification"]["text"] == "Blood Priority: O- donors needed"

    def test_read_state(self):
        message = serialize_event(ReadStateChange(ReadState("n-1", "u-ana"), ChangeEventType.UPDATE))
        assert message == {
            "event": "read_state",
            "change": "UPDATE",
            "state": {"notification_id": "n-1", "user_id": "u-ana", "read_at": None, "hidden_at": None},
        }
