"""Structured logging and request tracing for the notification service."""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import LogContext, generate_request_id, get_context_dict
from src.logging_config.middleware import RequestTracingMiddleware
from src.logging_config.setup import configure_logging

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "LogContext",
    "RequestTracingMiddleware",
    "configure_logging",
    "generate_request_id",
    "get_context_dict",
]
