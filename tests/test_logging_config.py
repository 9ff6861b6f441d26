"""Tests for structured logging and request tracing."""

import json
import logging
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.logging_config import RequestTracingMiddleware
from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import LogContext, generate_request_id, get_context_dict
from src.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    resolve_config,
)


def make_record(message="Push dispatch finished", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="src.notifications.dispatcher",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggingConfig:
    """Tests for logging configuration dataclasses."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.service_name == "glassline"
        assert "/health" in config.exclude_paths
        assert "httpx" in config.quiet_loggers

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GLASSLINE_LOG_LEVEL", "debug")
        monkeypatch.setenv("GLASSLINE_LOG_FORMAT", "console")
        config = resolve_config()
        assert config.level == LogLevel.DEBUG
        assert config.format == LogFormat.CONSOLE

    def test_invalid_env_ignored(self, monkeypatch):
        monkeypatch.setenv("GLASSLINE_LOG_LEVEL", "chatty")
        monkeypatch.delenv("GLASSLINE_LOG_FORMAT", raising=False)
        config = resolve_config(LoggingConfig(level=LogLevel.WARNING))
        assert config.level == LogLevel.WARNING
        assert config.format == LogFormat.JSON


class TestLogContext:
    """Tests for contextvar-bound log context."""

    def test_generate_request_id(self):
        assert generate_request_id() != generate_request_id()

    def test_binds_and_restores(self):
        assert get_context_dict() == {}
        with LogContext(user_id="u-ana", session_id="s-1"):
            assert get_context_dict() == {"user_id": "u-ana", "session_id": "s-1"}
        assert get_context_dict() == {}

    def test_nested(self):
        with LogContext(request_id="req-1"):
            with LogContext(request_id="req-2", user_id="u-ana"):
                assert get_context_dict()["request_id"] == "req-2"
            assert get_context_dict() == {"request_id": "req-1"}

    def test_bind_extra(self):
        with LogContext(user_id="u-ana") as ctx:
            ctx.bind(notification_id="n-1")
            assert get_context_dict()["notification_id"] == "n-1"
        assert "notification_id" not in get_context_dict()


class TestFormatters:
    """Tests for JSON and console formatters."""

    def test_structured_output(self):
        formatter = StructuredFormatter(service_name="glassline")
        with LogContext(request_id="req-9", user_id="u-ana"):
            line = formatter.format(make_record(duration_ms=12.5, notification_id="n-1"))
        entry = json.loads(line)
        assert entry["message"] == "Push dispatch finished"
        assert entry["level"] == "INFO"
        assert entry["service"] == "glassline"
        assert entry["request_id"] == "req-9"
        assert entry["user_id"] == "u-ana"
        assert entry["duration_ms"] == 12.5
        assert entry["notification_id"] == "n-1"
        assert entry["line"] == 10

    def test_structured_without_caller(self):
        entry = json.loads(StructuredFormatter(include_caller=False).format(make_record()))
        assert "function" not in entry

    def test_structured_exception(self):
        try:
            raise RuntimeError("channel closed")
        except RuntimeError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["exception"]["type"] == "RuntimeError"
        assert "channel closed" in entry["exception"]["message"]

    def test_console_output(self):
        with LogContext(session_id="s-1"):
            line = ConsoleFormatter().format(make_record(level=logging.WARNING))
        assert "WARNING" in line
        assert "Push dispatch finished" in line
        assert "session_id=s-1" in line


class TestConfigureLogging:
    """Tests for root logger setup."""

    def teardown_method(self):
        logging.getLogger().handlers.clear()

    def test_json_handler(self, monkeypatch):
        monkeypatch.delenv("GLASSLINE_LOG_LEVEL", raising=False)
        monkeypatch.delenv("GLASSLINE_LOG_FORMAT", raising=False)
        config = configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        root = logging.getLogger()
        assert config.level == LogLevel.DEBUG
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_console_handler(self, monkeypatch):
        monkeypatch.delenv("GLASSLINE_LOG_FORMAT", raising=False)
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)


class TestRequestTracingMiddleware:
    """Tests for request id propagation."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(RequestTracingMiddleware)

        @app.get("/context")
        async def context():
            return get_context_dict()

        return TestClient(app)

    def test_binds_request_and_user(self, client):
        resp = client.get("/context", headers={"X-Request-ID": "req-7", "X-User-Id": "u-ana"})
        assert resp.json() == {"request_id": "req-7", "user_id": "u-ana"}
        assert resp.headers["X-Request-ID"] == "req-7"

    def test_generates_request_id(self, client):
        resp = client.get("/context")
        assert resp.json()["request_id"] == resp.headers["X-Request-ID"]
