"""APScheduler setup for notification sweeps and absolute-time schedules.

The scheduler decides WHEN; the lane brokers decide WHERE and HOW. Periodic
jobs here only publish work:

- retry sweep: re-dispatches failed deliveries whose backoff elapsed
- pending sweep: re-enqueues notifications whose publish never happened
- cleanup: deletes terminal notifications past the retention window

Per-notification schedules (``scheduled_for`` in the future) are DateTrigger
jobs added by ``TaskiqQueueProvider`` on the same scheduler.
"""

from __future__ import annotations

import logging
from typing import Any

from apscheduler.schedulers.asyncio import (
    AsyncIOScheduler,  # type: ignore[import-untyped]
)
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]
from apscheduler.triggers.interval import (
    IntervalTrigger,  # type: ignore[import-untyped]
)

from notify_service.core.settings import get_notification_settings
from notify_service.features.notifications.enums import QueueLane
from notify_service.features.notifications.queue import (
    CLEANUP_TASK,
    PENDING_SWEEP_TASK,
    RETRY_SWEEP_TASK,
    get_notification_queue,
)

logger = logging.getLogger(__name__)

# Runs in the same process as FastAPI
scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine missed runs into one
        "max_instances": 1,
        "misfire_grace_time": 60,
    },
)


# =============================================================================
# Scheduler Job Wrappers
# =============================================================================
# APScheduler needs plain coroutines; each one publishes a sweep task.


async def _publish(lane: str, task_name: str, payload: dict[str, Any]) -> None:
    await get_notification_queue().enqueue(lane, payload, task_name=task_name)


async def _schedule_retry_sweep() -> None:
    await _publish(QueueLane.RETRY, RETRY_SWEEP_TASK, {})


async def _schedule_pending_sweep() -> None:
    await _publish(QueueLane.NORMAL, PENDING_SWEEP_TASK, {})


async def _schedule_cleanup() -> None:
    await _publish(QueueLane.LOW, CLEANUP_TASK, {})


def setup_scheduled_jobs() -> None:
    """Register the periodic notification jobs.

    Call during application startup after the lane brokers are started.
    """
    settings = get_notification_settings()
    logger.info("Setting up scheduled jobs with APScheduler")

    scheduler.add_job(
        func=_schedule_retry_sweep,
        trigger=IntervalTrigger(seconds=settings.retry_sweep_interval_seconds),
        id="notification_retry_sweep",
        name="Retry failed deliveries",
        replace_existing=True,
    )

    scheduler.add_job(
        func=_schedule_pending_sweep,
        trigger=IntervalTrigger(seconds=settings.pending_sweep_interval_seconds),
        id="notification_pending_sweep",
        name="Re-enqueue pending notifications",
        replace_existing=True,
    )

    scheduler.add_job(
        func=_schedule_cleanup,
        trigger=CronTrigger(hour=settings.cleanup_hour_utc, minute=0),
        id="notification_cleanup",
        name="Delete notifications past retention",
        replace_existing=True,
    )

    logger.info("Scheduled jobs registered", extra={"job_count": len(scheduler.get_jobs())})


async def start_scheduler() -> None:
    """Start the APScheduler.

    Call during application startup after setup_scheduled_jobs().
    """
    if not scheduler.running:
        logger.info("Starting APScheduler")
        scheduler.start()
        logger.info("APScheduler started", extra={"job_count": len(scheduler.get_jobs())})
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler() -> None:
    """Stop the APScheduler gracefully.

    Call during application shutdown. Pending notification schedules are
    dropped; the pending sweep dispatches them once they are overdue.
    """
    if scheduler.running:
        logger.info("Stopping APScheduler")
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")

