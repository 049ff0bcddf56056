"""Unit tests for deduplication key helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from notify_service.features.notifications.dedup import build_dedup_key, day_bucket, percent_bucket


def test_build_dedup_key_joins_parts() -> None:
    key = build_dedup_key("billing_limit_warning", "sub_123", percent_bucket(82.4))

    assert key == "billing_limit_warning_sub_123_80"


def test_build_dedup_key_requires_every_part() -> None:
    with pytest.raises(ValueError, match="required"):
        build_dedup_key("billing_limit_warning", "", 80)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(82.4, 80), (82.5, 85), (0, 0), (99.9, 100), (77.49, 75)],
)
def test_percent_bucket_rounds_to_nearest_step(value: float, expected: int) -> None:
    assert percent_bucket(value) == expected


def test_percent_bucket_rejects_non_positive_step() -> None:
    with pytest.raises(ValueError, match="positive"):
        percent_bucket(50, step=0)


def test_day_bucket_normalizes_to_utc() -> None:
    # 23:30 at UTC-5 is already the next day in UTC
    moment = datetime(2026, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

    assert day_bucket(moment) == "2026-03-11"
    assert day_bucket(date(2026, 3, 10)) == "2026-03-10"
    assert day_bucket(datetime(2026, 3, 10, 1, tzinfo=UTC)) == "2026-03-10"
