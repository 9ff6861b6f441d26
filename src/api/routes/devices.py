"""Device token registration."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.dependencies import get_service, get_user_id
from src.api.models import DeviceRegisterRequest, DeviceResponse
from src.notifications.models import DevicePushTarget
from src.notifications.service import NotificationService

router = APIRouter(prefix="/devices", tags=["Devices"])


def _to_response(target: DevicePushTarget) -> DeviceResponse:
    return DeviceResponse(
        id=target.id,
        platform=target.platform.value,
        device_id=target.device_id,
        app_version=target.app_version,
        is_active=target.is_active,
        last_seen_at=target.last_seen_at,
    )


@router.post("", response_model=DeviceResponse, status_code=201)
async def register_device(
    body: DeviceRegisterRequest,
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    """Register or refresh a push token. Re-registering reactivates it."""
    target = await service.register_device_token(
        user_id,
        body.platform,
        body.token,
        device_id=body.device_id,
        app_version=body.app_version,
    )
    return _to_response(target)


@router.get("", response_model=list[DeviceResponse])
async def list_devices(
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    targets = await service.devices.get_user_devices(user_id, active_only=False)
    return [_to_response(t) for t in targets]
