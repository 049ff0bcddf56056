"""Unit tests for delivery retry backoff."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notify_service.features.notifications.backoff import compute_backoff, next_retry_at


class TestComputeBackoff:
    """Test the exponential delay sequence."""

    @pytest.mark.parametrize(
        ("retry_count", "minutes"),
        [(0, 1), (1, 2), (2, 4), (3, 8)],
    )
    def test_doubles_from_one_minute(self, retry_count: int, minutes: int) -> None:
        assert compute_backoff(retry_count) == timedelta(minutes=minutes)

    def test_caps_at_one_hour(self) -> None:
        assert compute_backoff(6) == timedelta(hours=1)
        assert compute_backoff(500) == timedelta(hours=1)

    def test_custom_base_and_cap(self) -> None:
        delay = compute_backoff(
            3,
            base_delay=timedelta(seconds=10),
            max_delay=timedelta(seconds=45),
        )
        assert delay == timedelta(seconds=45)

    def test_negative_count_rejected(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            compute_backoff(-1)


def test_next_retry_at_is_after_failure() -> None:
    failed_at = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    assert next_retry_at(0, failed_at) == failed_at + timedelta(minutes=1)
    assert next_retry_at(2, failed_at) > failed_at
