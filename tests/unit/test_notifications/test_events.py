"""Unit tests for lifecycle events and sinks."""

from __future__ import annotations

import logging

import pytest

from notify_service.features.notifications.events import (
    DeliveryFailed,
    LoggingEventSink,
    NotificationCreated,
    NotificationEnqueueFailed,
    NotificationEventSink,
    RecordingEventSink,
)


def test_log_extra_carries_event_type() -> None:
    event = NotificationCreated(
        tenant_id="gym-1",
        notification_id="n-1",
        user_id="user-1",
        type="class_reminder",
        category="engagement",
        priority="normal",
        channels=["in_app"],
    )

    extra = event.to_log_extra()

    assert extra["event_type"] == "notification.created"
    assert extra["channels"] == ["in_app"]
    assert extra["event_id"]
    assert isinstance(extra["timestamp"], str)


def test_events_are_immutable() -> None:
    event = NotificationEnqueueFailed(tenant_id="gym-1", notification_id="n-1", error="down")

    with pytest.raises(ValueError):
        event.error = "other"


@pytest.mark.asyncio
async def test_recording_sink_filters_by_type() -> None:
    sink = RecordingEventSink()
    assert isinstance(sink, NotificationEventSink)

    await sink.emit(NotificationEnqueueFailed(tenant_id="gym-1", notification_id="n-1", error="down"))
    await sink.emit(
        DeliveryFailed(
            tenant_id="gym-1",
            notification_id="n-1",
            delivery_id="d-1",
            channel="email",
            retry_count=1,
            terminal=False,
        ),
    )

    assert len(sink.events) == 2
    assert [e.delivery_id for e in sink.of_type(DeliveryFailed)] == ["d-1"]


@pytest.mark.asyncio
async def test_logging_sink_warns_on_enqueue_failure(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("tests.notifications.events")
    sink = LoggingEventSink(logger)

    with caplog.at_level(logging.INFO, logger="tests.notifications.events"):
        await sink.emit(NotificationEnqueueFailed(tenant_id="gym-1", notification_id="n-1", error="down"))

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "notification.enqueue_failed"
    assert record.tenant_id == "gym-1"
