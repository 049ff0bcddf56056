"""Unit tests for the lane-aware notification queue."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from notify_service.core.settings.notifications import NotificationSettings
from notify_service.features.notifications.queue import (
    PROCESS_NOTIFICATION_TASK,
    RETRY_DELIVERY_TASK,
    SCHEDULE_JOB_PREFIX,
    NotificationQueue,
    QueueProvider,
    TaskiqQueueProvider,
)
from tests.utils import FakeQueueProvider, MutableClock


@pytest.fixture
def provider() -> FakeQueueProvider:
    return FakeQueueProvider()


@pytest.fixture
def queue(provider: FakeQueueProvider, clock: MutableClock) -> NotificationQueue:
    return NotificationQueue(provider, settings=NotificationSettings(), clock=clock)


def test_fake_provider_satisfies_protocol(provider: FakeQueueProvider) -> None:
    assert isinstance(provider, QueueProvider)


@pytest.mark.parametrize(
    ("priority", "lane", "delay"),
    [("critical", "critical", 0), ("high", "high", 30), ("normal", "normal", 120), ("low", "low", 300)],
)
@pytest.mark.asyncio
async def test_enqueue_immediate_routes_by_priority(
    queue: NotificationQueue,
    provider: FakeQueueProvider,
    priority: str,
    lane: str,
    delay: int,
) -> None:
    applied = await queue.enqueue_immediate("n-1", "gym-1", priority=priority)

    assert applied == delay
    job = provider.published[0]
    assert job.lane == lane
    assert job.task_name == PROCESS_NOTIFICATION_TASK
    assert job.payload == {"notification_id": "n-1", "tenant_id": "gym-1"}
    assert job.delay_seconds == delay


@pytest.mark.asyncio
async def test_enqueue_immediate_without_batch_delay(queue: NotificationQueue, provider: FakeQueueProvider) -> None:
    applied = await queue.enqueue_immediate("n-1", "gym-1", priority="low", apply_batch_delay=False)

    assert applied == 0
    assert provider.published[0].delay_seconds == 0


@pytest.mark.asyncio
async def test_schedule_future_uses_scheduled_lane(
    queue: NotificationQueue,
    provider: FakeQueueProvider,
    clock: MutableClock,
) -> None:
    run_at = clock.now + timedelta(hours=2)

    handle = await queue.schedule("n-1", "gym-1", run_at, priority="high")

    assert handle is not None
    assert handle.lane == "scheduled"
    assert handle.run_at == run_at
    assert provider.run_at[handle.schedule_id] == run_at
    assert provider.schedules[handle.schedule_id].lane == "scheduled"
    assert provider.published == []


@pytest.mark.asyncio
async def test_schedule_in_past_publishes_immediately(
    queue: NotificationQueue,
    provider: FakeQueueProvider,
    clock: MutableClock,
) -> None:
    handle = await queue.schedule("n-1", "gym-1", clock.now - timedelta(minutes=1), priority="high")

    assert handle is None
    assert provider.schedules == {}
    assert provider.published[0].lane == "high"
    assert provider.published[0].delay_seconds == 0


@pytest.mark.asyncio
async def test_queue_retry_uses_retry_lane(queue: NotificationQueue, provider: FakeQueueProvider) -> None:
    await queue.queue_retry("d-1", "gym-1", delay_seconds=120)

    job = provider.published[0]
    assert job.lane == "retry"
    assert job.task_name == RETRY_DELIVERY_TASK
    assert job.payload == {"delivery_id": "d-1", "tenant_id": "gym-1"}
    assert job.delay_seconds == 120


@pytest.mark.asyncio
async def test_queue_batch_publishes_each_item(queue: NotificationQueue, provider: FakeQueueProvider) -> None:
    count = await queue.queue_batch([("n-1", "gym-1"), ("n-2", "gym-2")], lane="low")

    assert count == 2
    assert [job.payload["notification_id"] for job in provider.published] == ["n-1", "n-2"]
    assert {job.lane for job in provider.published} == {"low"}


@pytest.mark.asyncio
async def test_cancel_schedule(queue: NotificationQueue, provider: FakeQueueProvider, clock: MutableClock) -> None:
    handle = await queue.schedule("n-1", "gym-1", clock.now + timedelta(days=1))
    assert handle is not None

    assert await queue.cancel_schedule(handle.schedule_id) is True
    assert await queue.cancel_schedule(handle.schedule_id) is False
    assert await queue.cancel_schedule(None) is False


@pytest.mark.asyncio
async def test_publish_failure_propagates(queue: NotificationQueue, provider: FakeQueueProvider) -> None:
    provider.fail = True

    with pytest.raises(ConnectionError):
        await queue.enqueue_immediate("n-1", "gym-1")


def test_lane_stats(queue: NotificationQueue) -> None:
    stats = queue.get_lane_stats()

    assert stats["lanes"]["critical"] == {"parallelism": 10, "batch_delay_seconds": 0}
    assert stats["lanes"]["retry"]["parallelism"] == 2
    assert stats["pending_schedules"] == 0


class TestTaskiqQueueProvider:
    """Test APScheduler-backed schedules without starting the scheduler."""

    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self) -> None:
        scheduler = AsyncIOScheduler(timezone="UTC")
        provider = TaskiqQueueProvider({"scheduled": object()}, scheduler)
        when = datetime.now(UTC) + timedelta(hours=1)

        schedule_id = await provider.schedule_at("scheduled", PROCESS_NOTIFICATION_TASK, {"notification_id": "n-1"}, when)

        assert schedule_id.startswith(SCHEDULE_JOB_PREFIX)
        assert provider.pending_schedules() == 1
        job = scheduler.get_job(schedule_id)
        assert job.args == ("scheduled", PROCESS_NOTIFICATION_TASK, {"notification_id": "n-1"})

        assert await provider.cancel(schedule_id) is True
        assert await provider.cancel(schedule_id) is False
        assert provider.pending_schedules() == 0

    @pytest.mark.asyncio
    async def test_unknown_lane_rejected(self) -> None:
        provider = TaskiqQueueProvider({}, AsyncIOScheduler(timezone="UTC"))

        with pytest.raises(ValueError, match="No broker configured"):
            await provider.publish("nowhere", PROCESS_NOTIFICATION_TASK, {})
