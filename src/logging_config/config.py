"""Logging configuration: levels, output formats and service identity."""

from dataclasses import dataclass, field
from enum import Enum


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    exclude_paths: list[str] = field(default_factory=lambda: ["/health"])
    service_name: str = "glassline"
    # Third-party loggers held at WARNING
    quiet_loggers: tuple[str, ...] = ("httpx", "httpcore", "urllib3", "asyncio", "sqlalchemy.engine")


DEFAULT_LOGGING_CONFIG = LoggingConfig()
