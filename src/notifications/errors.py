"""Notification error hierarchy.

Typed exceptions carrying an error code and the HTTP status the API layer
answers with, so one handler can catch the entire hierarchy.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Standardized error codes for notification failures."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOTIFICATION_NOT_FOUND = "NOTIFICATION_NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    DEGRADED_SCHEMA = "DEGRADED_SCHEMA"


ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOTIFICATION_NOT_FOUND: 404,
    ErrorCode.STORE_UNAVAILABLE: 503,
    ErrorCode.CHANNEL_ERROR: 502,
    ErrorCode.DEGRADED_SCHEMA: 500,
}


class NotificationError(Exception):
    """Base exception for all notification subsystem errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = ERROR_STATUS_MAP.get(error_code, 500)
        self.details = details or []


class StoreError(NotificationError):
    """Raised when the backing datastore is unavailable or rejects a write."""

    def __init__(self, message: str = "Notification store unavailable"):
        super().__init__(message, ErrorCode.STORE_UNAVAILABLE)


class NotFoundOrForbidden(NotificationError):
    """Raised when a mutation targets a notification the caller does not own."""

    def __init__(
        self,
        message: str = "Notification not found",
        notification_id: Optional[str] = None,
    ):
        details = [{"notification_id": notification_id}] if notification_id else None
        super().__init__(message, ErrorCode.NOTIFICATION_NOT_FOUND, details)
        self.notification_id = notification_id


class ValidationError(NotificationError):
    """Raised when input fails validation."""

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None):
        details = [{"field": field, "issue": message}] if field else None
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class ChannelError(NotificationError):
    """Raised when a push channel fails a send attempt."""

    def __init__(
        self,
        message: str = "Push channel failed",
        channel_code: Optional[str] = None,
        permanent: bool = False,
    ):
        super().__init__(message, ErrorCode.CHANNEL_ERROR)
        self.channel_code = channel_code
        self.permanent = permanent


class DegradedSchema(NotificationError):
    """Raised when the hide mechanism is missing from the backing schema."""

    def __init__(self, message: str = "notification_reads.hidden_at is unavailable"):
        super().__init__(message, ErrorCode.DEGRADED_SCHEMA)
