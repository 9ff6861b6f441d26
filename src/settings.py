"""Centralized settings for the Glassline notification service.

Uses pydantic-settings to load from environment variables (prefixed
GLASSLINE_) with development defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Glassline settings loaded from environment variables."""

    # --- Database ---
    database_url: str = "sqlite:///glassline.db"
    database_echo: bool = False

    # --- Expo push service ---
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str = ""
    mobile_batch_size: int = 100
    push_timeout_seconds: float = 10.0

    # --- Web Push (VAPID) ---
    vapid_private_key: str = ""
    vapid_public_key: str = ""
    vapid_subject: str = "mailto:notifications@glassline.local"

    # --- API ---
    cors_origins: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    model_config = {
        "env_prefix": "GLASSLINE_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
