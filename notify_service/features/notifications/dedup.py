"""Deduplication key helpers shared with producers.

Keys follow ``{event_type}_{entity_id}_{discriminator}``. Producers pick a
discriminator that is stable for one logical event, for example a usage
percentage rounded to the nearest 5 or the calendar date of a daily digest.

Example:
    key = build_dedup_key("billing_limit_warning", subscription_id, percent_bucket(82.4))
    # "billing_limit_warning_sub_123_80"
"""

from __future__ import annotations

from datetime import UTC, date, datetime


def build_dedup_key(event_type: str, entity_id: object, discriminator: object) -> str:
    """Join the three key parts with underscores.

    Raises:
        ValueError: If any part is empty.
    """
    parts = [str(event_type).strip(), str(entity_id).strip(), str(discriminator).strip()]
    if not all(parts):
        msg = "event_type, entity_id and discriminator are all required"
        raise ValueError(msg)
    return "_".join(parts)


def percent_bucket(value: float, step: int = 5) -> int:
    """Round a percentage to the nearest ``step`` (82.4 -> 80, 82.5 -> 85)."""
    if step <= 0:
        msg = "step must be positive"
        raise ValueError(msg)
    # Half-up rounding so buckets do not flip with banker's rounding
    return int((value + step / 2) // step * step)


def day_bucket(moment: datetime | date | None = None) -> str:
    """ISO calendar date used for once-per-day keys (UTC when a datetime)."""
    if moment is None:
        moment = datetime.now(UTC)
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone(UTC)
        return moment.date().isoformat()
    return moment.isoformat()
