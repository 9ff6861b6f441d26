"""FastAPI dependencies: the notification service and the calling user.

Authentication is handled upstream; the gateway forwards the caller's id
in the X-User-Id header.
"""

from fastapi import Header, HTTPException, Request

from src.notifications.service import NotificationService


def get_service(request: Request) -> NotificationService:
    """Return the service attached to the application at startup."""
    return request.app.state.service


async def get_user_id(x_user_id: str = Header(default="")) -> str:
    """Resolve the calling user from the X-User-Id header."""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id
