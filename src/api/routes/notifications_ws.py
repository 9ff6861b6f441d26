"""Realtime notification stream over WebSocket.

Each connection opens one fan-out session for the caller. The server pushes:

    {"event": "notification.insert", "notification": {...}}
    {"event": "read_state", "change": "INSERT" | "UPDATE", "state": {...}}

Clients may send ``{"action": "ping"}`` or
``{"action": "switch_user", "user_id": "..."}``.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.logging_config.context import LogContext, generate_request_id
from src.notifications.realtime import RealtimeInsert, ReadStateChange, SessionEvent
from src.notifications.rendering import format_notification_text

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Notifications"])


def serialize_event(event: SessionEvent) -> dict:
    if isinstance(event, RealtimeInsert):
        data = event.notification.to_dict()
        data["text"] = format_notification_text(event.notification)
        return {"event": "notification.insert", "notification": data}
    return {
        "event": "read_state",
        "change": event.event_type.value,
        "state": event.state.to_dict(),
    }


@router.websocket("/notifications/ws")
async def notifications_websocket(websocket: WebSocket) -> None:
    """Stream notification inserts and read-state changes to one user."""
    user_id = (
        websocket.headers.get("x-user-id") or websocket.query_params.get("user_id") or ""
    ).strip()
    if not user_id:
        await websocket.close(code=4001, reason="Missing user id")
        return

    await websocket.accept()
    service = websocket.app.state.service

    async def sink(event: SessionEvent) -> None:
        await websocket.send_json(serialize_event(event))

    session = service.open_session(user_id, sink)
    request_id = websocket.headers.get("x-request-id") or generate_request_id()
    with LogContext(request_id=request_id, user_id=user_id, session_id=session.session_id):
        logger.info("Notification stream connected")
        await websocket.send_json({"event": "connected", "session_id": session.session_id})
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                    continue

                action = message.get("action") if isinstance(message, dict) else None
                if action == "ping":
                    await websocket.send_json({"event": "pong"})
                elif action == "switch_user" and message.get("user_id"):
                    session.switch_user(str(message["user_id"]))
                    await websocket.send_json({"event": "switched", "user_id": session.user_id})
                else:
                    await websocket.send_json(
                        {"event": "error", "message": f"Unknown action: {action}"}
                    )
        except WebSocketDisconnect:
            logger.info("Notification stream disconnected")
        finally:
            service.fanout.close_session(session.session_id)
