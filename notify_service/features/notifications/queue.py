"""Lane-aware queueing for notification processing.

Work is published to one of six lanes (critical, high, normal, low,
scheduled, retry). Each lane is its own broker queue with its own consumer
parallelism, so a burst of low-priority work cannot starve critical sends.

``QueueProvider`` is the seam the service depends on. ``TaskiqQueueProvider``
publishes through taskiq lane brokers and keeps absolute-time schedules in
APScheduler; tests substitute an in-memory provider.

Example:
    queue = NotificationQueue(provider, settings=get_notification_settings())
    await queue.enqueue_immediate(notification_id, tenant_id, priority="high")
    handle = await queue.schedule(notification_id, tenant_id, run_at)
    await queue.cancel_schedule(handle.schedule_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger
from taskiq.kicker import AsyncKicker

from notify_service.core.database.base import generate_uuid7
from notify_service.features.notifications.enums import NotificationPriority, QueueLane
from notify_service.features.notifications.metrics import notification_enqueued_total

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from uuid import UUID

    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from taskiq import AsyncBroker

    from notify_service.core.settings.notifications import NotificationSettings

logger = logging.getLogger(__name__)

# Stable task names; workers register handlers under these on every lane
PROCESS_NOTIFICATION_TASK = "notifications.process_notification"
RETRY_DELIVERY_TASK = "notifications.retry_delivery"
RETRY_SWEEP_TASK = "notifications.retry_sweep"
PENDING_SWEEP_TASK = "notifications.pending_sweep"
CLEANUP_TASK = "notifications.cleanup"

SCHEDULE_JOB_PREFIX = "notification-schedule-"


@runtime_checkable
class QueueProvider(Protocol):
    """Transport the queue facade publishes through."""

    async def publish(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        delay_seconds: int = 0,
    ) -> None:
        """Publish one job. Raises if the broker did not accept it."""
        ...

    async def schedule_at(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        when: datetime,
    ) -> str:
        """Arrange a publish at ``when`` and return a cancellable schedule id."""
        ...

    async def cancel(self, schedule_id: str) -> bool:
        """Remove a pending schedule; False if it already ran or never existed."""
        ...

    def pending_schedules(self) -> int: ...


class TaskiqQueueProvider:
    """Publish via taskiq lane brokers; schedule via APScheduler date jobs.

    Args:
        brokers: Lane name to broker mapping
        scheduler: Running AsyncIOScheduler used for absolute-time schedules
    """

    def __init__(
        self,
        brokers: Mapping[str, AsyncBroker],
        scheduler: AsyncIOScheduler,
    ) -> None:
        self._brokers = dict(brokers)
        self._scheduler = scheduler

    def _broker_for(self, lane: str) -> AsyncBroker:
        try:
            return self._brokers[lane]
        except KeyError:
            msg = f"No broker configured for lane '{lane}'"
            raise ValueError(msg) from None

    async def publish(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        delay_seconds: int = 0,
    ) -> None:
        labels: dict[str, Any] = {"lane": lane}
        if delay_seconds > 0:
            labels["delay"] = delay_seconds
        kicker: AsyncKicker[Any, Any] = AsyncKicker(
            task_name=task_name,
            broker=self._broker_for(lane),
            labels=labels,
        )
        await kicker.kiq(payload)

    async def schedule_at(
        self,
        lane: str,
        task_name: str,
        payload: dict[str, Any],
        when: datetime,
    ) -> str:
        self._broker_for(lane)
        schedule_id = f"{SCHEDULE_JOB_PREFIX}{generate_uuid7()}"
        self._scheduler.add_job(
            func=self.publish,
            trigger=DateTrigger(run_date=when, timezone=UTC),
            args=[lane, task_name, payload],
            id=schedule_id,
            name=f"{task_name} on {lane}",
            misfire_grace_time=None,
        )
        return schedule_id

    async def cancel(self, schedule_id: str) -> bool:
        try:
            self._scheduler.remove_job(schedule_id)
        except JobLookupError:
            return False
        return True

    def pending_schedules(self) -> int:
        return sum(1 for job in self._scheduler.get_jobs() if job.id.startswith(SCHEDULE_JOB_PREFIX))


@dataclass(frozen=True, slots=True)
class ScheduleHandle:
    schedule_id: str
    run_at: datetime
    lane: str = QueueLane.SCHEDULED.value


class NotificationQueue:
    """Priority lanes, batching delays and scheduling for notifications.

    Immediate jobs get a per-priority delay (critical 0s, high 30s,
    normal 2min, low 5min) so the provider can batch them.
    """

    def __init__(
        self,
        provider: QueueProvider,
        *,
        settings: NotificationSettings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))

    @staticmethod
    def lane_for(priority: str) -> QueueLane:
        return QueueLane.for_priority(priority)

    def batch_delay(self, priority: str) -> int:
        return int(self._settings.batch_delays.get(NotificationPriority(priority).value, 0))

    @staticmethod
    def _payload(notification_id: UUID | str, tenant_id: str) -> dict[str, Any]:
        return {"notification_id": str(notification_id), "tenant_id": tenant_id}

    async def enqueue(
        self,
        lane: str,
        payload: dict[str, Any],
        *,
        task_name: str = PROCESS_NOTIFICATION_TASK,
        delay_seconds: int = 0,
    ) -> None:
        """Publish one job on ``lane``."""
        await self._provider.publish(lane, task_name, payload, delay_seconds)
        notification_enqueued_total.labels(lane=lane).inc()
        logger.debug(
            "Job enqueued",
            extra={"lane": lane, "task_name": task_name, "delay_seconds": delay_seconds, **payload},
        )

    async def enqueue_immediate(
        self,
        notification_id: UUID | str,
        tenant_id: str,
        *,
        priority: str = NotificationPriority.NORMAL,
        apply_batch_delay: bool = True,
    ) -> int:
        """Publish a notification to its priority lane.

        Returns:
            Delay applied, in seconds
        """
        delay = self.batch_delay(priority) if apply_batch_delay else 0
        await self.enqueue(
            self.lane_for(priority).value,
            self._payload(notification_id, tenant_id),
            delay_seconds=delay,
        )
        return delay

    async def schedule(
        self,
        notification_id: UUID | str,
        tenant_id: str,
        run_at: datetime,
        *,
        priority: str = NotificationPriority.NORMAL,
    ) -> ScheduleHandle | None:
        """Arrange processing at ``run_at`` on the scheduled lane.

        A time that has already passed is published immediately on the
        priority lane and no handle is returned.
        """
        if run_at <= self._clock():
            await self.enqueue_immediate(
                notification_id,
                tenant_id,
                priority=priority,
                apply_batch_delay=False,
            )
            return None

        lane = QueueLane.SCHEDULED.value
        schedule_id = await self._provider.schedule_at(
            lane,
            PROCESS_NOTIFICATION_TASK,
            self._payload(notification_id, tenant_id),
            run_at,
        )
        notification_enqueued_total.labels(lane=lane).inc()
        logger.info(
            "Notification scheduled",
            extra={"notification_id": str(notification_id), "run_at": run_at.isoformat(), "schedule_id": schedule_id},
        )
        return ScheduleHandle(schedule_id=schedule_id, run_at=run_at, lane=lane)

    async def queue_retry(
        self,
        delivery_id: UUID | str,
        tenant_id: str,
        *,
        delay_seconds: int = 0,
    ) -> None:
        """Publish a single-delivery retry on the retry lane."""
        await self.enqueue(
            QueueLane.RETRY.value,
            {"delivery_id": str(delivery_id), "tenant_id": tenant_id},
            task_name=RETRY_DELIVERY_TASK,
            delay_seconds=max(delay_seconds, 0),
        )

    async def queue_batch(
        self,
        items: Iterable[tuple[UUID | str, str]],
        *,
        lane: str = QueueLane.NORMAL.value,
    ) -> int:
        """Publish many ``(notification_id, tenant_id)`` pairs without delay.

        Returns:
            Number of jobs published
        """
        count = 0
        for notification_id, tenant_id in items:
            await self.enqueue(lane, self._payload(notification_id, tenant_id))
            count += 1
        return count

    async def cancel_schedule(self, schedule_id: str | None) -> bool:
        """Cancel a pending schedule. Returns whether one was removed."""
        if not schedule_id:
            return False
        cancelled = await self._provider.cancel(schedule_id)
        logger.info("Schedule cancel requested", extra={"schedule_id": schedule_id, "cancelled": cancelled})
        return cancelled

    def get_lane_stats(self) -> dict[str, Any]:
        """Configured lane parallelism, batch delays and pending schedules."""
        return {
            "lanes": {
                lane.value: {
                    "parallelism": self._settings.lane_parallelism.get(lane.value),
                    "batch_delay_seconds": self._settings.batch_delays.get(lane.value, 0),
                }
                for lane in QueueLane
            },
            "pending_schedules": self._provider.pending_schedules(),
        }


_queue: NotificationQueue | None = None


def get_notification_queue() -> NotificationQueue:
    """Get the process-wide queue bound to the taskiq lane brokers."""
    global _queue
    if _queue is None:
        from notify_service.core.settings import get_notification_settings
        from notify_service.infra.tasks.broker import brokers
        from notify_service.infra.tasks.scheduler import scheduler

        _queue = NotificationQueue(
            TaskiqQueueProvider(brokers, scheduler),
            settings=get_notification_settings(),
        )
    return _queue
