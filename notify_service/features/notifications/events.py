"""Lifecycle events for notifications and deliveries.

The engine reports what happened through a NotificationEventSink instead of
calling loggers or other subsystems inline. The default sink writes one
structured log record per event; tests swap in RecordingEventSink.

Example:
    sink = RecordingEventSink()
    service = NotificationService(..., event_sink=sink)
    ...
    assert [e.event_type for e in sink.events] == ["notification.created", ...]
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, ClassVar, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from notify_service.core.database.base import generate_uuid7


class NotificationEvent(BaseModel):
    """Base class for notification lifecycle events.

    Attributes:
        event_id: Unique identifier (UUID v7)
        timestamp: When the event occurred (UTC)
        tenant_id: Tenant the notification belongs to
        notification_id: Notification the event concerns
    """

    model_config = ConfigDict(frozen=True)

    event_type: ClassVar[str] = "notification.event"

    event_id: str = Field(default_factory=lambda: str(generate_uuid7()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tenant_id: str
    notification_id: str

    def to_log_extra(self) -> dict[str, Any]:
        return {"event_type": self.event_type, **self.model_dump(mode="json")}


class NotificationCreated(NotificationEvent):
    event_type: ClassVar[str] = "notification.created"

    user_id: str
    type: str
    category: str
    priority: str
    channels: list[str] = Field(default_factory=list)
    scheduled_for: datetime | None = None


class NotificationDeduplicated(NotificationEvent):
    event_type: ClassVar[str] = "notification.deduplicated"

    deduplication_key: str
    existing_status: str


class NotificationQueued(NotificationEvent):
    event_type: ClassVar[str] = "notification.queued"

    lane: str
    delay_seconds: int = 0
    schedule_id: str | None = None


class NotificationEnqueueFailed(NotificationEvent):
    event_type: ClassVar[str] = "notification.enqueue_failed"

    error: str


class DeliveryBlocked(NotificationEvent):
    event_type: ClassVar[str] = "delivery.blocked"

    delivery_id: str
    channel: str
    reason: str


class DeliverySent(NotificationEvent):
    event_type: ClassVar[str] = "delivery.sent"

    delivery_id: str
    channel: str
    external_id: str | None = None


class DeliveryFailed(NotificationEvent):
    event_type: ClassVar[str] = "delivery.failed"

    delivery_id: str
    channel: str
    error: str | None = None
    retry_count: int
    next_retry_at: datetime | None = None
    terminal: bool


class NotificationCompleted(NotificationEvent):
    """Notification reached sent, failed or cancelled."""

    event_type: ClassVar[str] = "notification.completed"

    status: str
    reason: str | None = None


@runtime_checkable
class NotificationEventSink(Protocol):
    async def emit(self, event: NotificationEvent) -> None: ...


class LoggingEventSink:
    """Write each event as a structured log record."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("notifications.events")

    async def emit(self, event: NotificationEvent) -> None:
        level = logging.WARNING if isinstance(event, NotificationEnqueueFailed) else logging.INFO
        self._logger.log(level, event.event_type, extra=event.to_log_extra())


class RecordingEventSink:
    """Keep events in memory (tests and local debugging)."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_cls: type[NotificationEvent]) -> list[NotificationEvent]:
        return [event for event in self.events if isinstance(event, event_cls)]
