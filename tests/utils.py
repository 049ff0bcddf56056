"""Test utilities and helper functions.

Fakes for the collaborators the notification service depends on, plus
factories for requests and persisted rows.

Usage:
    from tests.utils import FakeQueueProvider, FakeSender, MutableClock, make_request

    provider = FakeQueueProvider()
    sender = FakeSender("email", results=[DeliveryResult.failed("boom")])
    request = make_request(channels=["email"], deduplication_key="k-1")
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from notify_service.core.exceptions import ServiceUnavailableException
from notify_service.features.notifications.channels import DeliveryResult, SendContext
from notify_service.features.notifications.schemas import NotificationCreate

if TYPE_CHECKING:
    from notify_service.features.notifications.models import Notification, NotificationDelivery
    from notify_service.features.notifications.recipients import RecipientProfile


# ============================================================================
# Clock
# ============================================================================


class MutableClock:
    """Callable clock that only moves when told to.

    Example:
        clock = MutableClock(datetime(2026, 3, 10, 12, tzinfo=UTC))
        clock.advance(minutes=5)
    """

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime.now(UTC).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ============================================================================
# Queue
# ============================================================================


@dataclass
class PublishedJob:
    lane: str
    task_name: str
    payload: dict[str, Any]
    delay_seconds: int = 0


class FakeQueueProvider:
    """In-memory QueueProvider recording every publish and schedule.

    Set ``fail`` to make publish and schedule_at raise like an unreachable broker.
    """

    def __init__(self) -> None:
        self.published: list[PublishedJob] = []
        self.schedules: dict[str, PublishedJob] = {}
        self.run_at: dict[str, datetime] = {}
        self.cancelled: list[str] = []
        self.fail = False
        self._counter = 0

    async def publish(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        delay_seconds: int = 0,
    ) -> None:
        if self.fail:
            msg = "broker unavailable"
            raise ConnectionError(msg)
        self.published.append(PublishedJob(lane, task_name, dict(payload), delay_seconds))

    async def schedule_at(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        when: datetime,
    ) -> str:
        if self.fail:
            msg = "scheduler unavailable"
            raise ConnectionError(msg)
        self._counter += 1
        schedule_id = f"schedule-{self._counter}"
        self.schedules[schedule_id] = PublishedJob(lane, task_name, dict(payload))
        self.run_at[schedule_id] = when
        return schedule_id

    async def cancel(self, schedule_id: str) -> bool:
        if schedule_id not in self.schedules:
            return False
        del self.schedules[schedule_id]
        self.cancelled.append(schedule_id)
        return True

    def pending_schedules(self) -> int:
        return len(self.schedules)

    def jobs_for(self, task_name: str) -> list[PublishedJob]:
        return [job for job in self.published if job.task_name == task_name]


# ============================================================================
# Channels
# ============================================================================


@dataclass
class SentCall:
    notification_id: Any
    delivery_id: Any
    recipient: str
    context: SendContext


@dataclass
class FakeSender:
    """Channel sender returning queued results, then ``default``.

    Entries in ``results`` may be DeliveryResult instances or exceptions to raise.
    """

    channel: str
    results: list[DeliveryResult | BaseException] = field(default_factory=list)
    default: DeliveryResult = field(default_factory=lambda: DeliveryResult(success=True, external_id="msg-1", cost=1))
    delay: float = 0.0
    calls: list[SentCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._pending: deque[DeliveryResult | BaseException] = deque(self.results)

    def queue(self, *results: DeliveryResult | BaseException) -> None:
        self._pending.extend(results)

    async def send(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        import asyncio

        self.calls.append(SentCall(notification.id, delivery.id, delivery.recipient, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._pending:
            outcome = self._pending.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.default


class GatedSender(FakeSender):
    """Sender that blocks inside ``send`` until ``release`` is set.

    ``started`` is set once the first send is in flight, so a test can act
    while the worker holds its claim.
    """

    def __post_init__(self) -> None:
        import asyncio

        super().__post_init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        self.started.set()
        await self.release.wait()
        return await super().send(notification, delivery, context)


# ============================================================================
# Directory
# ============================================================================


class UnavailableDirectory:
    """Recipient directory that is always down."""

    def __init__(self) -> None:
        self.calls = 0

    async def get_profile(self, tenant_id: str, user_id: str) -> RecipientProfile | None:
        self.calls += 1
        raise ServiceUnavailableException(
            detail="Recipient directory unavailable",
            type="recipient-directory-unavailable",
        )


# ============================================================================
# Factories
# ============================================================================


def make_request(**overrides: Any) -> NotificationCreate:
    """Build a valid NotificationCreate with realistic defaults."""
    data: dict[str, Any] = {
        "tenant_id": "gym-1",
        "user_id": "user-1",
        "type": "billing_limit_warning",
        "category": "billing",
        "priority": "normal",
        "title": "You are close to your plan limit",
        "message": "You have used 80% of this month's check-ins.",
    }
    data.update(overrides)
    return NotificationCreate(**data)
