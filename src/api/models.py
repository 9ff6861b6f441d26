"""API Request/Response Models.

Pydantic schemas for the notification endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Common ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    hide_strategy: str = ""


# ─── Notifications ───────────────────────────────────────────────────────


class NotificationCreateRequest(BaseModel):
    """Create a notification (system producers only)."""

    type: str = Field(..., min_length=3, max_length=100, examples=["inventory.lowStock"])
    payload: dict[str, Any] = Field(default_factory=dict)
    target_user_id: Optional[str] = None


class NotificationResponse(BaseModel):
    id: str
    type: str
    payload: dict[str, Any]
    created_at: datetime
    target_user_id: Optional[str] = None
    read_at: Optional[datetime] = None
    text: str = ""


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class ReadStateResponse(BaseModel):
    notification_id: str
    user_id: str
    read_at: Optional[datetime] = None
    hidden_at: Optional[datetime] = None


class ClearAllResponse(BaseModel):
    snapshot_at: datetime
    affected_ids: list[str]
    hidden: bool


# ─── Devices ─────────────────────────────────────────────────────────────


class DeviceRegisterRequest(BaseModel):
    """Register a push token for the calling user."""

    platform: str = Field(..., pattern="^(ios|android|web)$")
    token: str = Field(..., min_length=1)
    device_id: Optional[str] = None
    app_version: Optional[str] = None


class DeviceResponse(BaseModel):
    id: str
    platform: str
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    is_active: bool
    last_seen_at: Optional[datetime] = None


# ─── Preferences ─────────────────────────────────────────────────────────


class PreferencesResponse(BaseModel):
    push_enabled: bool
    work_orders_enabled: bool
    inventory_enabled: bool
    training_enabled: bool
    blood_priority_enabled: bool
    production_enabled: bool
    events_enabled: bool
    updated_at: Optional[datetime] = None


class PreferencesPatchRequest(BaseModel):
    """Partial update; omitted flags keep their value."""

    push_enabled: Optional[bool] = None
    work_orders_enabled: Optional[bool] = None
    inventory_enabled: Optional[bool] = None
    training_enabled: Optional[bool] = None
    blood_priority_enabled: Optional[bool] = None
    production_enabled: Optional[bool] = None
    events_enabled: Optional[bool] = None


# ─── Delivery logs ───────────────────────────────────────────────────────


class DeliveryLogResponse(BaseModel):
    id: str
    notification_id: str
    user_id: str
    target_id: Optional[str] = None
    token: str
    platform: Optional[str] = None
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
