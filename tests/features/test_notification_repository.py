"""Tests for notification repositories against SQLite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notify_service.features.notifications.models import Notification, NotificationDelivery
from notify_service.features.notifications.repository import (
    NotificationDeliveryRepository,
    NotificationPreferenceRepository,
    NotificationRepository,
)


def _notification(**overrides) -> Notification:
    values = {
        "tenant_id": "gym-1",
        "user_id": "user-1",
        "type": "membership_expiring",
        "category": "retention",
        "priority": "normal",
        "title": "Your membership expires soon",
        "message": "Renew before Friday to keep your rate.",
        "status": "queued",
        "max_retries": 3,
    }
    values.update(overrides)
    return Notification(**values)


def _delivery(**overrides) -> NotificationDelivery:
    values = {"channel": "email", "recipient": "sam@example.com", "status": "pending", "retry_count": 0, "cost": 0}
    values.update(overrides)
    return NotificationDelivery(**values)


async def _store(session, notification: Notification) -> Notification:
    session.add(notification)
    await session.commit()
    return notification


@pytest.fixture
def notifications() -> NotificationRepository:
    return NotificationRepository()


@pytest.fixture
def deliveries() -> NotificationDeliveryRepository:
    return NotificationDeliveryRepository()


class TestDeliveryClaims:
    """Test the conditional UPDATE that guards every send."""

    @pytest.mark.asyncio
    async def test_only_first_claim_wins(self, db_session, deliveries):
        notification = await _store(db_session, _notification(deliveries=[_delivery()]))
        delivery_id = notification.deliveries[0].id

        first = await deliveries.claim(db_session, delivery_id, from_statuses=["pending"])
        second = await deliveries.claim(db_session, delivery_id, from_statuses=["pending"])

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_stale_queued_delivery_can_be_reclaimed(self, db_session, deliveries):
        notification = await _store(db_session, _notification(deliveries=[_delivery(status="queued")]))
        delivery_id = notification.deliveries[0].id

        fresh = await deliveries.claim(
            db_session,
            delivery_id,
            from_statuses=["pending"],
            stale_before=datetime.now(UTC) - timedelta(minutes=15),
        )
        stale = await deliveries.claim(
            db_session,
            delivery_id,
            from_statuses=["pending"],
            stale_before=datetime.now(UTC) + timedelta(minutes=1),
        )

        assert fresh is False
        assert stale is True

    @pytest.mark.asyncio
    async def test_claim_clears_retry_schedule(self, db_session, deliveries):
        now = datetime.now(UTC)
        notification = await _store(
            db_session,
            _notification(deliveries=[_delivery(status="failed", retry_count=1, next_retry_at=now)]),
        )
        delivery = notification.deliveries[0]

        assert await deliveries.claim(db_session, delivery.id, from_statuses=["failed"])
        await db_session.refresh(delivery)

        assert delivery.status == "queued"
        assert delivery.next_retry_at is None

    @pytest.mark.asyncio
    async def test_finish_does_not_overwrite_cancel(self, db_session, deliveries):
        notification = await _store(db_session, _notification(deliveries=[_delivery(status="queued")]))
        delivery = notification.deliveries[0]

        assert await deliveries.cancel_open(db_session, notification.id, reason="member left") == 1
        written = await deliveries.finish(db_session, delivery.id, "sent", external_id="msg-1", sent_at=datetime.now(UTC))
        await db_session.refresh(delivery)

        assert written is False
        assert delivery.status == "cancelled"
        assert delivery.failure_reason == "member left"
        assert delivery.external_id is None

    @pytest.mark.asyncio
    async def test_finish_writes_claimed_delivery(self, db_session, deliveries):
        notification = await _store(db_session, _notification(deliveries=[_delivery(status="queued")]))
        delivery = notification.deliveries[0]

        written = await deliveries.finish(db_session, delivery.id, "sent", external_id="msg-1", cost=1)
        await db_session.refresh(delivery)

        assert written is True
        assert delivery.status == "sent"
        assert delivery.external_id == "msg-1"

    @pytest.mark.asyncio
    async def test_cancel_open_keeps_finished_outcomes(self, db_session, deliveries):
        now = datetime.now(UTC)
        notification = await _store(
            db_session,
            _notification(
                deliveries=[
                    _delivery(recipient="pending@example.com"),
                    _delivery(recipient="queued@example.com", status="queued"),
                    _delivery(recipient="retry@example.com", status="failed", retry_count=1, next_retry_at=now),
                    _delivery(recipient="terminal@example.com", status="failed", failure_reason="Invalid API key"),
                    _delivery(recipient="sent@example.com", status="sent", sent_at=now),
                ],
            ),
        )

        cancelled = await deliveries.cancel_open(db_session, notification.id, reason="cancelled")
        for delivery in notification.deliveries:
            await db_session.refresh(delivery)

        assert cancelled == 3
        assert {d.recipient: d.status for d in notification.deliveries} == {
            "pending@example.com": "cancelled",
            "queued@example.com": "cancelled",
            "retry@example.com": "cancelled",
            "terminal@example.com": "failed",
            "sent@example.com": "sent",
        }
        terminal = next(d for d in notification.deliveries if d.recipient == "terminal@example.com")
        assert terminal.failure_reason == "Invalid API key"


class TestRetryQueries:
    """Test which failed deliveries the retry sweep sees."""

    @pytest.mark.asyncio
    async def test_find_retryable(self, db_session, deliveries):
        now = datetime.now(UTC)
        await _store(
            db_session,
            _notification(
                deliveries=[
                    _delivery(recipient="due@example.com", status="failed", retry_count=1, next_retry_at=now),
                    _delivery(
                        recipient="later@example.com",
                        status="failed",
                        retry_count=1,
                        next_retry_at=now + timedelta(minutes=5),
                    ),
                    _delivery(recipient="terminal@example.com", status="failed", retry_count=1, next_retry_at=None),
                    _delivery(recipient="spent@example.com", status="failed", retry_count=3, next_retry_at=now),
                ],
            ),
        )
        await _store(
            db_session,
            _notification(
                status="cancelled",
                deliveries=[_delivery(recipient="cancelled@example.com", status="failed", next_retry_at=now)],
            ),
        )

        due = await deliveries.find_retryable(db_session, now=now)

        assert [d.recipient for d in due] == ["due@example.com"]
        assert due[0].notification.tenant_id == "gym-1"
        assert await deliveries.find_retryable(db_session, now=now, max_retries=1) == []

    @pytest.mark.asyncio
    async def test_find_stale_queued(self, db_session, deliveries):
        await _store(db_session, _notification(deliveries=[_delivery(status="queued")]))

        assert await deliveries.find_stale_queued(db_session, stale_before=datetime.now(UTC) - timedelta(hours=1)) == []
        stale = await deliveries.find_stale_queued(db_session, stale_before=datetime.now(UTC) + timedelta(minutes=1))
        assert len(stale) == 1


class TestNotificationQueries:
    """Test dedup lookup, status transitions and retention."""

    @pytest.mark.asyncio
    async def test_dedup_lookup_matches_queued_and_sent_only(self, db_session, notifications):
        await _store(db_session, _notification(deduplication_key="renewal-7d", status="failed"))
        assert await notifications.find_by_dedup_key(db_session, "gym-1", "renewal-7d") is None

        sent = await _store(db_session, _notification(deduplication_key="renewal-7d", status="sent"))
        found = await notifications.find_by_dedup_key(db_session, "gym-1", "renewal-7d")

        assert found is not None
        assert found.id == sent.id
        assert await notifications.find_by_dedup_key(db_session, "gym-2", "renewal-7d") is None

    @pytest.mark.asyncio
    async def test_set_status_is_conditional(self, db_session, notifications):
        notification = await _store(db_session, _notification(status="pending"))

        assert await notifications.set_status(db_session, notification.id, "queued", from_statuses=["pending"])
        assert not await notifications.set_status(db_session, notification.id, "queued", from_statuses=["pending"])

    @pytest.mark.asyncio
    async def test_find_due_pending_skips_future_schedules(self, db_session, notifications):
        now = datetime.now(UTC)
        due = await _store(db_session, _notification(status="pending"))
        await _store(db_session, _notification(status="pending", scheduled_for=now + timedelta(hours=1)))
        lost = await _store(
            db_session,
            _notification(status="queued", schedule_id="sched-1", scheduled_for=now - timedelta(hours=1)),
        )

        found = await notifications.find_due_pending(
            db_session,
            now=now,
            stale_scheduled_before=now - timedelta(minutes=15),
        )

        assert {n.id for n in found} == {due.id, lost.id}

    @pytest.mark.asyncio
    async def test_delete_terminal_before(self, db_session, notifications):
        parent = await _store(db_session, _notification(status="sent", deliveries=[_delivery(status="sent")]))
        child = await _store(db_session, _notification(status="queued", parent_id=parent.id))
        await _store(db_session, _notification(status="pending"))

        deleted = await notifications.delete_terminal_before(db_session, datetime.now(UTC) + timedelta(seconds=1))
        await db_session.commit()

        assert deleted == 1
        assert await notifications.get_with_deliveries(db_session, parent.id) is None
        remaining = await notifications.get_with_deliveries(db_session, child.id)
        assert remaining is not None
        assert remaining.parent_id is None


@pytest.mark.asyncio
async def test_preference_upsert_creates_then_updates(db_session):
    repository = NotificationPreferenceRepository()

    created = await repository.upsert(db_session, "gym-1", "user-1", {"enable_email": False, "unknown": 1})
    updated = await repository.upsert(db_session, "gym-1", "user-1", {"timezone": "America/New_York"})
    await db_session.commit()

    assert updated.id == created.id
    assert updated.enable_email is False
    assert updated.timezone == "America/New_York"
    assert updated.enable_in_app is True
