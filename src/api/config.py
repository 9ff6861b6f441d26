"""API configuration."""

from dataclasses import dataclass, field


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Glassline Notifications API"
    version: str = "1.0.0"
    description: str = "Notifications, read state, device tokens and push preferences"
    prefix: str = ""
    docs_url: str = "/docs"
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:8081",   # Expo dev server
        "http://localhost:19006",  # Expo web
    ])
    cors_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "PATCH", "OPTIONS"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])


DEFAULT_API_CONFIG = APIConfig()
