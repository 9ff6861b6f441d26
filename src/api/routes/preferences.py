"""Push preference endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.dependencies import get_service, get_user_id
from src.api.models import PreferencesPatchRequest, PreferencesResponse
from src.notifications.service import NotificationService

router = APIRouter(prefix="/notification-preferences", tags=["Preferences"])


@router.get("", response_model=PreferencesResponse)
async def get_preferences(
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    """The caller's preferences, created all-enabled on first access."""
    prefs = await service.get_preferences(user_id)
    return PreferencesResponse(**prefs.to_dict())


@router.patch("", response_model=PreferencesResponse)
async def update_preferences(
    body: PreferencesPatchRequest,
    user_id: str = Depends(get_user_id),
    service: NotificationService = Depends(get_service),
):
    prefs = await service.update_preferences(user_id, body.model_dump(exclude_none=True))
    return PreferencesResponse(**prefs.to_dict())
