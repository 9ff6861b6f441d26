"""Notification endpoints: list, unread count, mark read, clear all, create."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_service, get_user_id
from src.api.models import (
    ClearAllResponse,
    DeliveryLogResponse,
    NotificationCreateRequest,
    NotificationListResponse,
    NotificationResponse,
    ReadStateResponse,
    UnreadCountResponse,
)
from src.notifications.models import Notification
from src.notifications.rendering import format_notification_text
from src.notifications.service import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _to_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id,
        type=n.type,
        payload=n.payload,
        created_at=n.created_at,
        target_user_id=n.target_user_id,
        read_at=n.read_at,
        text=format_notification_text(n),
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    """Visible notifications for the caller, newest first."""
    notifications = await service.list_visible(user_id)
    return NotificationListResponse(
        notifications=[_to_response(n) for n in notifications],
        unread_count=sum(1 for n in notifications if n.read_at is None),
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    return UnreadCountResponse(unread_count=await service.unread_count(user_id))


@router.post("", response_model=NotificationResponse, status_code=201)
async def create_notification(
    body: NotificationCreateRequest,
    service: NotificationService = Depends(get_service),
):
    """Create a notification. Push delivery happens in the background."""
    notification = await service.create_notification(
        body.type, body.payload, target_user_id=body.target_user_id,
    )
    return _to_response(notification)


@router.post("/clear", response_model=ClearAllResponse)
async def clear_all(
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    """Hide everything visible to the caller right now.

    ``hidden`` is false when the store can only mark entries read.
    """
    result = await service.clear_all(user_id)
    return ClearAllResponse(
        snapshot_at=result.snapshot_at,
        affected_ids=sorted(result.affected_ids),
        hidden=result.hidden,
    )


@router.post("/{notification_id}/read", response_model=ReadStateResponse)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    state = await service.mark_read(notification_id, user_id)
    return ReadStateResponse(**state.to_dict())


@router.get("/{notification_id}/deliveries", response_model=list[DeliveryLogResponse])
async def list_deliveries(
    notification_id: str,
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    """The caller's push delivery attempts for a notification."""
    logs = await service.delivery_logs(notification_id=notification_id, user_id=user_id)
    return [DeliveryLogResponse(**log.to_dict()) for log in logs]
