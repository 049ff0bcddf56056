"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notify_service.features.notifications.enums import (
    DigestFrequency,
    NotificationCategory,
    NotificationChannel,
    NotificationPriority,
)

if TYPE_CHECKING:
    from notify_service.features.notifications.models import Notification, NotificationDelivery

StatsTimeframe = Literal["24h", "7d", "30d"]


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ============================================================================
# Creation
# ============================================================================


class NotificationCreate(BaseModel):
    """Producer request to notify one recipient."""

    tenant_id: str = Field(..., min_length=1, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255, description="Recipient user id")
    membership_id: str | None = Field(default=None, max_length=255)

    type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Event tag (e.g., 'billing_limit_warning')",
    )
    category: NotificationCategory
    priority: NotificationPriority = NotificationPriority.NORMAL

    title: str = Field(..., min_length=1, max_length=500)
    message: str = Field(..., min_length=1, description="Plain text; newlines are preserved")
    action_url: str | None = Field(default=None, max_length=2048)
    action_label: str | None = Field(default=None, max_length=100)
    data: dict[str, Any] | None = None

    template_id: str | None = Field(default=None, max_length=100)
    template_variables: dict[str, Any] | None = None

    scheduled_for: datetime | None = Field(default=None, description="Deliver at this time (UTC)")
    expires_at: datetime | None = Field(default=None, description="Abandon delivery after this time")

    channels: list[NotificationChannel] | None = Field(
        default=None,
        description="Requested channels; defaults to the configured default (in_app)",
    )
    deduplication_key: str | None = Field(default=None, min_length=1, max_length=255)
    group_key: str | None = Field(default=None, max_length=255)
    parent_id: UUID | None = None
    source: str | None = Field(default=None, max_length=100)
    max_retries: int | None = Field(default=None, ge=0, le=20)

    @field_validator("tenant_id", "user_id", "type", "title")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("channels")
    @classmethod
    def unique_channels(
        cls,
        value: list[NotificationChannel] | None,
    ) -> list[NotificationChannel] | None:
        if value is None:
            return None
        if not value:
            msg = "at least one channel is required"
            raise ValueError(msg)
        # Keep request order, drop repeats
        return list(dict.fromkeys(value))

    @field_validator("scheduled_for", "expires_at")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @model_validator(mode="after")
    def expiry_after_schedule(self) -> NotificationCreate:
        if self.scheduled_for and self.expires_at and self.expires_at <= self.scheduled_for:
            msg = "expires_at must be later than scheduled_for"
            raise ValueError(msg)
        return self


class BulkNotificationCreate(BaseModel):
    notifications: list[NotificationCreate] = Field(..., min_length=1, max_length=1000)


class CancelRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    reason: str = Field(default="cancelled", max_length=500)


# ============================================================================
# Service results
# ============================================================================


@dataclass(slots=True)
class CreateResult:
    """Outcome of create(): the stored notification and its deliveries."""

    notification: Notification
    deliveries: list[NotificationDelivery]
    deduplicated: bool = False


@dataclass(slots=True)
class BulkCreateResult:
    batch_id: str
    results: list[CreateResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(1 for result in self.results if not result.deduplicated)

    @property
    def deduplicated(self) -> int:
        return sum(1 for result in self.results if result.deduplicated)


@dataclass(slots=True)
class ProcessResult:
    """Counts from one processing pass over a notification."""

    notification_id: UUID
    status: str | None
    sent: int = 0
    failed: int = 0
    blocked: int = 0
    skipped: int = 0
    found: bool = True


# ============================================================================
# Responses
# ============================================================================


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    channel: str
    recipient: str
    status: str
    retry_count: int
    next_retry_at: datetime | None = None
    sent_at: datetime | None = None
    external_id: str | None = None
    failure_reason: str | None = None
    cost: int = 0


class NotificationResponse(BaseModel):
    """Representation of a notification returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    user_id: str
    membership_id: str | None = None
    type: str
    category: str
    priority: str
    title: str
    message: str
    action_url: str | None = None
    action_label: str | None = None
    data: dict[str, Any] | None = None
    template_id: str | None = None
    status: str
    failure_reason: str | None = None
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    deduplication_key: str | None = None
    group_key: str | None = None
    batch_id: str | None = None
    sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CreateResponse(BaseModel):
    notification: NotificationResponse
    deliveries: list[DeliveryResponse]
    deduplicated: bool

    @classmethod
    def from_result(cls, result: CreateResult) -> CreateResponse:
        return cls(
            notification=NotificationResponse.model_validate(result.notification),
            deliveries=[DeliveryResponse.model_validate(d) for d in result.deliveries],
            deduplicated=result.deduplicated,
        )


class BulkCreateResponse(BaseModel):
    batch_id: str
    created: int
    deduplicated: int
    results: list[CreateResponse]


class NotificationDetailResponse(NotificationResponse):
    deliveries: list[DeliveryResponse] = Field(default_factory=list)


class ProcessResponse(BaseModel):
    notification_id: UUID
    status: str | None
    sent: int
    failed: int
    blocked: int
    skipped: int


class NotificationStats(BaseModel):
    """Counts over a rolling window for dashboards."""

    tenant_id: str | None = None
    timeframe: StatsTimeframe
    since: datetime
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_channel: dict[str, int] = Field(default_factory=dict)


# ============================================================================
# Preferences
# ============================================================================


class PreferenceUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    enable_in_app: bool | None = None
    enable_email: bool | None = None
    enable_billing: bool | None = None
    enable_retention: bool | None = None
    enable_engagement: bool | None = None
    enable_workflow: bool | None = None
    enable_system: bool | None = None
    enable_social: bool | None = None
    quiet_hours_start: int | None = Field(default=None, ge=0, le=23)
    quiet_hours_end: int | None = Field(default=None, ge=0, le=23)
    timezone: str | None = Field(default=None, max_length=64)
    max_daily_notifications: int | None = Field(default=None, ge=0)
    digest_frequency: DigestFrequency | None = None
    email_address: str | None = Field(default=None, max_length=320)

    @model_validator(mode="after")
    def quiet_hours_pair(self) -> PreferenceUpdate:
        provided = {"quiet_hours_start", "quiet_hours_end"} & self.model_fields_set
        if len(provided) == 1:
            msg = "quiet_hours_start and quiet_hours_end must be set together"
            raise ValueError(msg)
        if provided and (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            msg = "quiet_hours_start and quiet_hours_end must both be set or both be null"
            raise ValueError(msg)
        return self


class PreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    user_id: str
    enable_in_app: bool
    enable_email: bool
    enable_billing: bool
    enable_retention: bool
    enable_engagement: bool
    enable_workflow: bool
    enable_system: bool
    enable_social: bool
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None
    timezone: str
    max_daily_notifications: int | None = None
    digest_frequency: str
    email_address: str | None = None
