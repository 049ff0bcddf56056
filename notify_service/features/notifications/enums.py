"""Enumerations for the notification lifecycle."""

from __future__ import annotations

from enum import StrEnum


class NotificationStatus(StrEnum):
    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


# Deliveries share the notification state machine
DeliveryStatus = NotificationStatus

TERMINAL_STATUSES = frozenset(
    {NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED},
)

# Statuses a notification can still leave; every status write is guarded by them
OPEN_STATUSES = (NotificationStatus.PENDING, NotificationStatus.QUEUED)

# Statuses a duplicate create() collapses onto
DEDUP_STATUSES = (NotificationStatus.QUEUED, NotificationStatus.SENT)

_ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset(
        {
            NotificationStatus.QUEUED,
            NotificationStatus.SENT,
            NotificationStatus.FAILED,
            NotificationStatus.CANCELLED,
        },
    ),
    NotificationStatus.QUEUED: frozenset(
        {NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED},
    ),
    NotificationStatus.SENT: frozenset(),
    NotificationStatus.FAILED: frozenset(),
    NotificationStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Whether a notification may move from ``current`` to ``target``.

    Staying in the same state is always allowed so re-running processing is
    harmless.
    """
    current_status = NotificationStatus(current)
    target_status = NotificationStatus(target)
    return current_status == target_status or target_status in _ALLOWED_TRANSITIONS[current_status]


class NotificationCategory(StrEnum):
    BILLING = "billing"
    RETENTION = "retention"
    ENGAGEMENT = "engagement"
    WORKFLOW = "workflow"
    SYSTEM = "system"
    SOCIAL = "social"


class NotificationPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationChannel(StrEnum):
    EMAIL = "email"
    IN_APP = "in_app"


class QueueLane(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    SCHEDULED = "scheduled"
    RETRY = "retry"

    @classmethod
    def for_priority(cls, priority: str) -> QueueLane:
        return cls(NotificationPriority(priority).value)


class DigestFrequency(StrEnum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


class BlockReason(StrEnum):
    """Why a preference check cancelled a delivery."""

    EMAIL_DISABLED = "email_disabled"
    IN_APP_DISABLED = "in_app_disabled"
    BILLING_DISABLED = "billing_disabled"
    RETENTION_DISABLED = "retention_disabled"
    ENGAGEMENT_DISABLED = "engagement_disabled"
    WORKFLOW_DISABLED = "workflow_disabled"
    SYSTEM_DISABLED = "system_disabled"
    SOCIAL_DISABLED = "social_disabled"
    QUIET_HOURS = "quiet_hours"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"


class FailureReason(StrEnum):
    """Non-provider reasons recorded on notifications and deliveries."""

    EXPIRED = "expired"
    CANCELLED_BY_PRODUCER = "cancelled"
    NO_DELIVERIES = "no_deliveries"
    ALL_DELIVERIES_BLOCKED = "all_deliveries_blocked"
    ALL_DELIVERIES_FAILED = "all_deliveries_failed"
    SEND_TIMEOUT = "send_timeout"
    UNSUPPORTED_CHANNEL = "unsupported_channel"
