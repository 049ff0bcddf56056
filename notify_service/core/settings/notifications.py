"""Notification engine settings.

Environment variables use NOTIFY_ prefix.
Example: NOTIFY_MAX_RETRIES=5, NOTIFY_RETENTION_DAYS=30,
NOTIFY_LANE_PARALLELISM='{"critical": 20}'
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LANE_PARALLELISM: dict[str, int] = {
    "critical": 10,
    "high": 8,
    "normal": 5,
    "low": 3,
    "scheduled": 5,
    "retry": 2,
}

# Seconds added to immediate jobs so the provider can batch them
DEFAULT_BATCH_DELAYS: dict[str, int] = {
    "critical": 0,
    "high": 30,
    "normal": 120,
    "low": 300,
}


class NotificationSettings(BaseSettings):
    """Delivery, retry, queueing and retention policy."""

    default_channels: list[str] = Field(
        default_factory=lambda: ["in_app"],
        description="Channels used when a producer does not request any",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Delivery attempts allowed before a failure is terminal",
    )
    retry_base_delay_seconds: int = Field(default=60, ge=1)
    retry_max_delay_seconds: int = Field(default=3600, ge=1)
    send_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="Upper bound for a single provider call",
    )
    retention_days: int = Field(default=90, ge=1, le=3650)
    retry_batch_size: int = Field(default=100, ge=1, le=10_000)
    pending_batch_size: int = Field(default=100, ge=1, le=10_000)
    stale_delivery_minutes: int = Field(
        default=15,
        ge=1,
        description="Deliveries stuck in 'queued' this long are dispatched again",
    )
    retry_sweep_interval_seconds: int = Field(default=60, ge=5)
    pending_sweep_interval_seconds: int = Field(default=300, ge=5)
    cleanup_hour_utc: int = Field(default=3, ge=0, le=23)
    lane_parallelism: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_LANE_PARALLELISM),
    )
    batch_delays: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_BATCH_DELAYS),
    )
    directory_url: str | None = Field(
        default=None,
        description="Account service base URL used to look up recipient emails",
    )
    directory_timeout_seconds: float = Field(default=5.0, gt=0, le=60.0)

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("lane_parallelism")
    @classmethod
    def merge_lane_defaults(cls, value: dict[str, int]) -> dict[str, int]:
        """Fill lanes missing from an override with their defaults."""
        if any(limit < 1 for limit in value.values()):
            msg = "lane parallelism must be at least 1"
            raise ValueError(msg)
        return {**DEFAULT_LANE_PARALLELISM, **value}

    @field_validator("batch_delays")
    @classmethod
    def merge_delay_defaults(cls, value: dict[str, int]) -> dict[str, int]:
        if any(delay < 0 for delay in value.values()):
            msg = "batch delays cannot be negative"
            raise ValueError(msg)
        return {**DEFAULT_BATCH_DELAYS, **value}
