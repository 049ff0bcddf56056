"""Application-level settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """HTTP application settings.

    Environment variables use APP_ prefix.
    Example: APP_DEBUG=true, APP_API_PREFIX=/api/v1
    """

    service_name: str = Field(default="notify-service", min_length=1, max_length=100)
    title: str = Field(default="Notification Delivery Engine")
    version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)
    api_prefix: str = Field(
        default="/api/v1",
        description="Prefix for versioned API routes",
    )
    root_path: str = Field(default="", description="ASGI root path behind a proxy")

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
