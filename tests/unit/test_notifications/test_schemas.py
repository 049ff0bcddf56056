"""Unit tests for notification request schemas and enums."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from notify_service.features.notifications.enums import QueueLane, can_transition
from notify_service.features.notifications.schemas import (
    BulkNotificationCreate,
    NotificationCreate,
    PreferenceUpdate,
)
from tests.utils import make_request


class TestNotificationCreate:
    """Test creation request validation."""

    def test_defaults(self) -> None:
        request = make_request()

        assert request.priority == "normal"
        assert request.channels is None
        assert request.max_retries is None

    def test_duplicate_channels_collapse_in_order(self) -> None:
        request = make_request(channels=["email", "in_app", "email"])

        assert request.channels == ["email", "in_app"]

    def test_empty_channel_list_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least one channel"):
            make_request(channels=[])

    def test_unknown_channel_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_request(channels=["sms"])

    def test_unknown_category_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_request(category="marketing")

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not be blank"):
            make_request(title="   ")

    def test_naive_datetimes_are_utc(self) -> None:
        request = make_request(scheduled_for=datetime(2026, 3, 10, 9, 0))

        assert request.scheduled_for == datetime(2026, 3, 10, 9, 0, tzinfo=UTC)

    def test_expiry_must_follow_schedule(self) -> None:
        with pytest.raises(ValidationError, match="expires_at must be later"):
            make_request(
                scheduled_for=datetime(2026, 3, 10, 9, 0, tzinfo=UTC),
                expires_at=datetime(2026, 3, 10, 8, 0, tzinfo=UTC),
            )

    def test_bulk_requires_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            BulkNotificationCreate(notifications=[])

    def test_bulk_accepts_requests(self) -> None:
        bulk = BulkNotificationCreate(notifications=[make_request().model_dump()])

        assert isinstance(bulk.notifications[0], NotificationCreate)


class TestPreferenceUpdate:
    """Test partial preference updates."""

    def test_quiet_hours_must_be_set_together(self) -> None:
        with pytest.raises(ValidationError, match="set together"):
            PreferenceUpdate(quiet_hours_start=22)

    def test_quiet_hours_cleared_together(self) -> None:
        update = PreferenceUpdate(quiet_hours_start=None, quiet_hours_end=None)

        assert update.model_dump(exclude_unset=True) == {"quiet_hours_start": None, "quiet_hours_end": None}

    def test_quiet_hours_half_null_rejected(self) -> None:
        with pytest.raises(ValidationError, match="both be set or both be null"):
            PreferenceUpdate(quiet_hours_start=22, quiet_hours_end=None)

    def test_hour_range(self) -> None:
        with pytest.raises(ValidationError):
            PreferenceUpdate(quiet_hours_start=24, quiet_hours_end=6)


class TestStatusTransitions:
    """Test the monotonic status machine."""

    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            ("pending", "queued", True),
            ("queued", "sent", True),
            ("queued", "pending", False),
            ("sent", "failed", False),
            ("cancelled", "queued", False),
            ("failed", "failed", True),
        ],
    )
    def test_can_transition(self, current: str, target: str, allowed: bool) -> None:
        assert can_transition(current, target) is allowed

    @pytest.mark.parametrize(
        ("priority", "lane"),
        [("critical", QueueLane.CRITICAL), ("high", QueueLane.HIGH), ("normal", QueueLane.NORMAL), ("low", QueueLane.LOW)],
    )
    def test_lane_for_priority(self, priority: str, lane: QueueLane) -> None:
        assert QueueLane.for_priority(priority) is lane
