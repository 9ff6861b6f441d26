"""Push content, in-app text, alert messages and deep links per type."""

import logging
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Union

from src.notifications.models import Notification, PushContent

logger = logging.getLogger(__name__)

DEFAULT_DEEP_LINK = "/notifications"

# type -> (route, payload key carrying the id, query parameter)
DEEP_LINKS: dict[str, tuple[str, str, str]] = {
    "inventory.lowStock": ("/inventory-group", "itemId", "itemId"),
    "production.authorized": ("/production-detail", "productionId", "productionId"),
    "production.tempered": ("/production-detail", "productionId", "productionId"),
    "workOrder.created": ("/work-order-detail", "workOrderId", "workOrderId"),
    "workOrder.updated": ("/work-order-detail", "workOrderId", "workOrderId"),
    "training.assigned": ("/training-detail", "trainingId", "trainingId"),
    "bloodPriority.new": ("/blood-priority", "messageId", "messageId"),
    "event.created": ("/event-detail", "eventId", "eventId"),
}


def _text(payload: Mapping[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    if value is None or value == "":
        return default
    return str(value)


def _order_line(payload: Mapping[str, Any]) -> str:
    return " | ".join((
        _text(payload, "clientName", "Client"),
        _text(payload, "orderType"),
        _text(payload, "orderNumber"),
    ))


def parse_payload_date(value: Any) -> Optional[Union[date, datetime]]:
    """Parse an ISO date or datetime string. Returns None when unparseable."""
    if isinstance(value, (date, datetime)):
        return value
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        return date.fromisoformat(text)
    except ValueError:
        return None


def format_schedule(date_value: Any, time_value: Any = None) -> str:
    """Format a payload date as dd/mm/YYYY plus an optional ' at HH:MM'.

    An unparseable date is shown as given.
    """
    if date_value is None or not str(date_value).strip():
        return ""

    parsed = parse_payload_date(date_value)
    if parsed is None:
        logger.debug("Unparseable payload date %r, showing it raw", date_value)
        text = str(date_value).strip()
    else:
        text = parsed.strftime("%d/%m/%Y")

    if time_value is not None and str(time_value).strip():
        hhmm = ":".join(str(time_value).strip().split(":")[:2])
        text += f" at {hhmm}"
    return text


def _with_schedule(base: str, schedule: str) -> str:
    return f"{base} - {schedule}" if schedule else base


# Push title/body per type

def _low_stock(p):
    return ("Low stock", f"{_text(p, 'itemName', 'Item')} is running low ({_text(p, 'stock', '0')} units)")


def _production_authorized(p):
    return ("Order authorized", f"{_order_line(p)} - Authorized")


def _production_tempered(p):
    return ("Order in tempering", f"{_order_line(p)} - Entered the tempering stage")


def _work_order_created(p):
    body = f"Work order created for {_text(p, 'clientName', 'client')}"
    return ("New work order", _with_schedule(body, format_schedule(p.get("scheduledDate"), p.get("scheduledTime"))))


def _work_order_updated(p):
    return ("Work order updated", f"Work order updated: {_text(p, 'clientName', 'client')}")


def _training_assigned(p):
    return ("New training", f"New training available: {_text(p, 'trainingTitle', 'Training')}")


def _blood_priority(p):
    return ("Blood Priority", _text(p, "title", "New urgent message"))


def _event_created(p):
    body = _text(p, "title", "New event created")
    return ("New event", _with_schedule(body, format_schedule(p.get("startDate"), p.get("startTime"))))


PUSH_RENDERERS: dict[str, Callable[[Mapping[str, Any]], tuple[str, str]]] = {
    "inventory.lowStock": _low_stock,
    "production.authorized": _production_authorized,
    "production.tempered": _production_tempered,
    "workOrder.created": _work_order_created,
    "workOrder.updated": _work_order_updated,
    "training.assigned": _training_assigned,
    "bloodPriority.new": _blood_priority,
    "event.created": _event_created,
}

GENERIC_TITLE = "New notification"
GENERIC_BODY = "You have a new notification"


def deep_link(notification_type: str, payload: Mapping[str, Any]) -> str:
    """App route for a notification, the notification center by default."""
    route = DEEP_LINKS.get(notification_type)
    if route is None:
        return DEFAULT_DEEP_LINK
    path, key, param = route
    value = payload.get(key)
    if value is None or value == "":
        return DEFAULT_DEEP_LINK
    return f"{path}?{param}={value}"


def render_push_content(
    notification_type: str, payload: Optional[Mapping[str, Any]] = None,
) -> PushContent:
    """Render the push title, body and deep link for a notification."""
    payload = payload or {}
    renderer = PUSH_RENDERERS.get(notification_type)
    if renderer is None:
        title, body = GENERIC_TITLE, GENERIC_BODY
    else:
        title, body = renderer(payload)
    return PushContent(title=title, body=body, deep_link=deep_link(notification_type, payload))


def format_notification_text(notification: Notification) -> str:
    """One-line text for the in-app notification list."""
    p = notification.payload or {}
    t = notification.type

    if t == "inventory.lowStock":
        return f"{_text(p, 'itemName', 'Item')} - Low stock"
    if t == "production.authorized":
        return f"{_order_line(p)} - Authorized"
    if t == "production.tempered":
        return f"{_order_line(p)} - Entered the tempering stage"
    if t == "workOrder.created":
        return _with_schedule(
            "New work order created",
            format_schedule(p.get("scheduledDate"), p.get("scheduledTime")),
        )
    if t == "workOrder.updated":
        return f"Work order updated: {_text(p, 'clientName', 'Client')}"
    if t == "event.created":
        return _with_schedule(
            "New event created", format_schedule(p.get("startDate"), p.get("startTime")),
        )
    if t == "training.assigned":
        return f"New training: {_text(p, 'trainingTitle', 'Training')}"
    if t == "bloodPriority.new":
        return f"Blood Priority: {_text(p, 'title', 'New urgent message')}"
    return t


def alert_message(notification_type: str, payload: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    """Optional text for the local alert that accompanies a realtime insert."""
    payload = payload or {}
    if notification_type == "inventory.lowStock":
        return f"Low stock: {_text(payload, 'itemName', 'Item')} ({_text(payload, 'stock', '0')} units)"
    if notification_type == "production.authorized":
        return f"Order authorized: {_order_line(payload)}"
    return None
