"""FastAPI Application Factory.

Creates the notifications API with its middleware stack: security headers,
request tracing, error handlers and CORS.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.errors import register_exception_handlers
from src.api.models import HealthResponse
from src.api.routes import devices, notifications, notifications_ws, preferences
from src.logging_config import RequestTracingMiddleware, configure_logging
from src.notifications.config import NotificationConfig
from src.notifications.service import NotificationService
from src.settings import get_settings

logger = logging.getLogger(__name__)


# ── Security Headers Middleware ───────────────────────────────────────


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to all HTTP responses."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ── Service wiring ───────────────────────────────────────────────────


def build_service_from_settings() -> NotificationService:
    """Service over the configured SQL database."""
    from src.db.engine import get_sync_engine
    from src.notifications.sql_datastore import SqlDatastore

    settings = get_settings()
    return NotificationService(
        datastore=SqlDatastore(get_sync_engine()),
        config=NotificationConfig.from_settings(settings),
    )


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    service: Optional[NotificationService] = None,
    config: Optional[APIConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Notification service to serve. Built from settings at
            startup when omitted.
        config: API configuration. Uses defaults if not provided.
    """
    config = config or DEFAULT_API_CONFIG

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if getattr(app.state, "service", None) is None:
            app.state.service = build_service_from_settings()
        logger.info(
            "Notifications API starting (hide strategy: %s)",
            app.state.service.read_state.strategy.name,
        )
        yield
        await app.state.service.close()
        logger.info("Notifications API shut down")

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        lifespan=lifespan,
    )
    app.state.service = service

    # add_middleware prepends, so order here is innermost-first.
    cors_origins = get_settings().cors_origins or config.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    register_exception_handlers(app)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        svc = app.state.service
        return HealthResponse(
            status="ok" if svc.read_state.strategy.hides else "degraded",
            version=config.version,
            hide_strategy=svc.read_state.strategy.name,
        )

    app.include_router(notifications.router, prefix=config.prefix)
    app.include_router(devices.router, prefix=config.prefix)
    app.include_router(preferences.router, prefix=config.prefix)
    app.include_router(notifications_ws.router)

    return app
