"""Exception handlers and the JSON error envelope."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.logging_config.context import get_context_dict
from src.notifications.errors import ErrorCode, NotificationError

logger = logging.getLogger(__name__)


def error_body(
    code: str,
    message: str,
    details: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Build the standard error envelope."""
    body: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if details:
        body["error"]["details"] = details
    request_id = get_context_dict().get("request_id")
    if request_id:
        body["error"]["request_id"] = request_id
    return body


async def handle_notification_error(request: Request, exc: NotificationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("API error [%s] (%d): %s", exc.error_code.value, exc.status_code, exc.message)
    else:
        logger.info("API error [%s] (%d): %s", exc.error_code.value, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error_code.value, exc.message, exc.details),
    )


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "issue": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=error_body(ErrorCode.VALIDATION_ERROR.value, "Request validation failed", details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the notification error handlers on an application."""
    app.add_exception_handler(NotificationError, handle_notification_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
