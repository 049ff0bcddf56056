"""Recipient preference evaluation.

Checks run in a fixed order and the first failing one decides the block
reason: channel toggle, category toggle, quiet hours, daily cap. A missing
preference record allows everything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notify_service.features.notifications.enums import (
    BlockReason,
    NotificationCategory,
    NotificationChannel,
    NotificationPriority,
)

if TYPE_CHECKING:
    from notify_service.features.notifications.models import NotificationPreference

logger = logging.getLogger(__name__)

ToggleAccessor = Callable[["NotificationPreference"], bool]

CHANNEL_TOGGLES: dict[NotificationChannel, tuple[ToggleAccessor, BlockReason]] = {
    NotificationChannel.EMAIL: (lambda p: p.enable_email, BlockReason.EMAIL_DISABLED),
    NotificationChannel.IN_APP: (lambda p: p.enable_in_app, BlockReason.IN_APP_DISABLED),
}

CATEGORY_TOGGLES: dict[NotificationCategory, tuple[ToggleAccessor, BlockReason]] = {
    NotificationCategory.BILLING: (lambda p: p.enable_billing, BlockReason.BILLING_DISABLED),
    NotificationCategory.RETENTION: (lambda p: p.enable_retention, BlockReason.RETENTION_DISABLED),
    NotificationCategory.ENGAGEMENT: (lambda p: p.enable_engagement, BlockReason.ENGAGEMENT_DISABLED),
    NotificationCategory.WORKFLOW: (lambda p: p.enable_workflow, BlockReason.WORKFLOW_DISABLED),
    NotificationCategory.SYSTEM: (lambda p: p.enable_system, BlockReason.SYSTEM_DISABLED),
    NotificationCategory.SOCIAL: (lambda p: p.enable_social, BlockReason.SOCIAL_DISABLED),
}


@dataclass(frozen=True, slots=True)
class PreferenceDecision:
    allowed: bool
    reason: BlockReason | None = None

    @classmethod
    def allow(cls) -> PreferenceDecision:
        return cls(allowed=True)

    @classmethod
    def block(cls, reason: BlockReason) -> PreferenceDecision:
        return cls(allowed=False, reason=reason)


def in_quiet_hours(hour: int, start: int | None, end: int | None) -> bool:
    """Whether ``hour`` falls inside the quiet window, both ends inclusive.

    ``start <= end`` is a direct range; ``start > end`` wraps past midnight
    and covers [start, 24) and [0, end].

    Examples:
        in_quiet_hours(23, 22, 6) -> True
        in_quiet_hours(7, 22, 6) -> False
        in_quiet_hours(17, 9, 17) -> True
    """
    if start is None or end is None:
        return False
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Load an IANA zone, falling back to UTC for unknown names."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown preference timezone, using UTC", extra={"timezone": name})
        return ZoneInfo("UTC")


def local_day_start(now: datetime, timezone_name: str | None) -> datetime:
    """Midnight of ``now``'s local calendar day, expressed in UTC."""
    tz = resolve_timezone(timezone_name)
    local = now.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz).astimezone(UTC)


class PreferenceEvaluator:
    """Decide whether one delivery may be sent right now."""

    def __init__(self, *, critical_bypasses_quiet_hours: bool = True) -> None:
        self._critical_bypasses_quiet_hours = critical_bypasses_quiet_hours

    def check_static(
        self,
        preferences: NotificationPreference | None,
        *,
        channel: str,
        category: str,
        priority: str,
        now: datetime,
    ) -> PreferenceDecision:
        """Run every check that does not need the daily send count."""
        if preferences is None:
            return PreferenceDecision.allow()

        channel_toggle = CHANNEL_TOGGLES.get(NotificationChannel(channel))
        if channel_toggle is not None:
            accessor, reason = channel_toggle
            if not accessor(preferences):
                return PreferenceDecision.block(reason)

        category_toggle = CATEGORY_TOGGLES.get(NotificationCategory(category))
        if category_toggle is not None:
            accessor, reason = category_toggle
            if not accessor(preferences):
                return PreferenceDecision.block(reason)

        bypass = (
            self._critical_bypasses_quiet_hours and priority == NotificationPriority.CRITICAL
        )
        if not bypass:
            local_hour = now.astimezone(resolve_timezone(preferences.timezone)).hour
            if in_quiet_hours(local_hour, preferences.quiet_hours_start, preferences.quiet_hours_end):
                return PreferenceDecision.block(BlockReason.QUIET_HOURS)

        return PreferenceDecision.allow()

    @staticmethod
    def check_daily_cap(
        preferences: NotificationPreference | None,
        sent_today: int,
    ) -> PreferenceDecision:
        """Block once today's successful sends reach the configured cap."""
        if preferences is None or preferences.max_daily_notifications is None:
            return PreferenceDecision.allow()
        if sent_today >= preferences.max_daily_notifications:
            return PreferenceDecision.block(BlockReason.DAILY_LIMIT_EXCEEDED)
        return PreferenceDecision.allow()

    def evaluate(
        self,
        preferences: NotificationPreference | None,
        *,
        channel: str,
        category: str,
        priority: str,
        now: datetime,
        sent_today: int = 0,
    ) -> PreferenceDecision:
        """Run all checks in order and return the first block, if any."""
        decision = self.check_static(
            preferences,
            channel=channel,
            category=category,
            priority=priority,
            now=now,
        )
        if not decision.allowed:
            return decision
        return self.check_daily_cap(preferences, sent_today)
