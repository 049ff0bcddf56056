"""Repositories for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import contains_eager, selectinload

from notify_service.core.database.base import utcnow
from notify_service.core.database.repository import BaseRepository
from notify_service.features.notifications.enums import (
    DEDUP_STATUSES,
    TERMINAL_STATUSES,
    DeliveryStatus,
    NotificationStatus,
)
from notify_service.features.notifications.models import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
    NotificationTemplate,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationTemplateRepository(BaseRepository[NotificationTemplate]):
    """Repository for NotificationTemplate model."""

    def __init__(self) -> None:
        """Initialize with NotificationTemplate model."""
        super().__init__(NotificationTemplate)

    async def get_active(self, session: AsyncSession, template_id: str) -> NotificationTemplate | None:
        """Get an active template by its stable identifier."""
        stmt = select(NotificationTemplate).where(
            and_(
                NotificationTemplate.template_id == template_id,
                NotificationTemplate.is_active.is_(True),
            ),
        )
        template = (await session.execute(stmt)).scalar_one_or_none()
        self._lazy.debug(lambda: f"db.get_active({template_id=}) -> {'found' if template else 'not found'}")
        return template


class NotificationPreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for per-recipient preferences."""

    def __init__(self) -> None:
        """Initialize with NotificationPreference model."""
        super().__init__(NotificationPreference)

    async def get_for_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> NotificationPreference | None:
        """Get the preference record for a recipient within a tenant.

        Returns:
            The record, or None when the recipient never saved preferences
        """
        stmt = select(NotificationPreference).where(
            and_(
                NotificationPreference.tenant_id == tenant_id,
                NotificationPreference.user_id == user_id,
            ),
        )
        preference = (await session.execute(stmt)).scalar_one_or_none()
        self._lazy.debug(lambda: f"db.get_for_user({tenant_id=}, {user_id=}) -> {'found' if preference else 'defaults'}")
        return preference

    async def upsert(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        values: dict[str, Any],
    ) -> NotificationPreference:
        """Create or update the recipient's preference record (flush only).

        Args:
            session: Database session
            tenant_id: Tenant identifier
            user_id: Recipient user identifier
            values: Column values to set; unknown keys are ignored

        Returns:
            The stored record
        """
        preference = await self.get_for_user(session, tenant_id, user_id)
        if preference is None:
            preference = NotificationPreference(tenant_id=tenant_id, user_id=user_id)
            session.add(preference)

        columns = NotificationPreference.__table__.columns.keys()
        for key, value in values.items():
            if key in columns and key not in {"id", "tenant_id", "user_id"}:
                setattr(preference, key, value)

        await session.flush()
        return preference


class NotificationRepository(BaseRepository[Notification]):
    """Repository for Notification model.

    Queries here back creation (deduplication), processing (loading with
    deliveries), the pending sweep, statistics and retention cleanup.
    """

    def __init__(self) -> None:
        """Initialize with Notification model."""
        super().__init__(Notification)

    async def get_with_deliveries(
        self,
        session: AsyncSession,
        notification_id: UUID,
        *,
        tenant_id: str | None = None,
    ) -> Notification | None:
        """Load a notification and its deliveries, refreshing any cached state.

        Args:
            session: Database session
            notification_id: Notification primary key
            tenant_id: Restrict the lookup to one tenant

        Returns:
            Notification with ``deliveries`` populated, or None
        """
        stmt = (
            select(Notification)
            .where(Notification.id == notification_id)
            .options(selectinload(Notification.deliveries))
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            stmt = stmt.where(Notification.tenant_id == tenant_id)

        notification = (await session.execute(stmt)).scalar_one_or_none()
        self._lazy.debug(lambda: f"db.get_with_deliveries({notification_id}) -> {'found' if notification else 'not found'}")
        return notification

    async def find_by_dedup_key(
        self,
        session: AsyncSession,
        tenant_id: str,
        deduplication_key: str,
    ) -> Notification | None:
        """Find the newest queued or sent notification carrying the key."""
        stmt = (
            select(Notification)
            .where(
                and_(
                    Notification.tenant_id == tenant_id,
                    Notification.deduplication_key == deduplication_key,
                    Notification.status.in_([s.value for s in DEDUP_STATUSES]),
                ),
            )
            .options(selectinload(Notification.deliveries))
            .order_by(Notification.created_at.desc())
            .limit(1)
        )
        notification = (await session.execute(stmt)).scalars().first()
        self._lazy.debug(lambda: f"db.find_by_dedup_key({deduplication_key=}) -> {'hit' if notification else 'miss'}")
        return notification

    async def find_due_pending(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        stale_scheduled_before: datetime | None = None,
        limit: int = 100,
    ) -> Sequence[Notification]:
        """Notifications that are due but were never handed to a worker.

        Covers ``pending`` rows whose publish failed and, when
        ``stale_scheduled_before`` is given, ``queued`` rows whose in-memory
        schedule was lost before it fired.
        """
        unpublished = and_(
            Notification.status == NotificationStatus.PENDING,
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
        )
        condition = unpublished
        if stale_scheduled_before is not None:
            condition = or_(
                unpublished,
                and_(
                    Notification.status == NotificationStatus.QUEUED,
                    Notification.schedule_id.is_not(None),
                    Notification.scheduled_for <= stale_scheduled_before,
                ),
            )
        stmt = (
            select(Notification)
            .where(condition)
            .order_by(Notification.created_at)
            .limit(limit)
        )
        items = (await session.execute(stmt)).scalars().all()
        self._lazy.debug(lambda: f"db.find_due_pending(limit={limit}) -> {len(items)}")
        return items

    async def set_status(
        self,
        session: AsyncSession,
        notification_id: UUID,
        status: str,
        *,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        """Conditionally move a notification to ``status``.

        Args:
            session: Database session
            notification_id: Notification primary key
            status: Target status
            from_statuses: Statuses the row must currently be in
            **values: Other columns to set in the same statement

        Returns:
            True if the row was in one of ``from_statuses`` and was updated
        """
        values = {"status": status, "updated_at": utcnow(), **values}
        stmt = (
            update(Notification)
            .where(
                and_(
                    Notification.id == notification_id,
                    Notification.status.in_(list(from_statuses)),
                ),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def count_by(
        self,
        session: AsyncSession,
        column: Any,
        *,
        since: datetime,
        tenant_id: str | None = None,
    ) -> dict[str, int]:
        """Group notifications created since ``since`` by one column."""
        stmt = (
            select(column, func.count(Notification.id))
            .where(Notification.created_at >= since)
            .group_by(column)
        )
        if tenant_id is not None:
            stmt = stmt.where(Notification.tenant_id == tenant_id)
        rows = (await session.execute(stmt)).all()
        return {str(key): int(count) for key, count in rows}

    async def delete_terminal_before(self, session: AsyncSession, cutoff: datetime) -> int:
        """Delete terminal notifications created before ``cutoff``.

        Deliveries are removed first so the cleanup does not depend on the
        database enforcing ON DELETE CASCADE (SQLite without the pragma).

        Returns:
            Number of notifications deleted
        """
        terminal = [s.value for s in TERMINAL_STATUSES]
        expired_ids = (
            select(Notification.id)
            .where(
                and_(
                    Notification.status.in_(terminal),
                    Notification.created_at < cutoff,
                ),
            )
            .scalar_subquery()
        )
        await session.execute(
            delete(NotificationDelivery)
            .where(NotificationDelivery.notification_id.in_(expired_ids))
            .execution_options(synchronize_session=False),
        )
        # Children may point at rows being removed
        await session.execute(
            update(Notification)
            .where(Notification.parent_id.in_(expired_ids))
            .values(parent_id=None)
            .execution_options(synchronize_session=False),
        )
        result = await session.execute(
            delete(Notification)
            .where(
                and_(
                    Notification.status.in_(terminal),
                    Notification.created_at < cutoff,
                ),
            )
            .execution_options(synchronize_session=False),
        )
        deleted = result.rowcount or 0
        self._lazy.debug(lambda: f"db.delete_terminal_before({cutoff.isoformat()}) -> {deleted}")
        return deleted


class NotificationDeliveryRepository(BaseRepository[NotificationDelivery]):
    """Repository for NotificationDelivery model.

    ``claim`` is the only way a delivery enters ``queued`` during processing;
    it is a conditional UPDATE so two workers racing on the same delivery
    cannot both send it.
    """

    def __init__(self) -> None:
        """Initialize with NotificationDelivery model."""
        super().__init__(NotificationDelivery)

    async def claim(
        self,
        session: AsyncSession,
        delivery_id: UUID,
        *,
        from_statuses: Iterable[str],
        stale_before: datetime | None = None,
    ) -> bool:
        """Move a delivery to ``queued`` if nobody else holds it.

        Args:
            session: Database session
            delivery_id: Delivery primary key
            from_statuses: Statuses the delivery may be claimed from
            stale_before: Also reclaim ``queued`` deliveries last touched
                before this time (abandoned by a crashed worker)

        Returns:
            True if this caller now owns the delivery
        """
        condition = NotificationDelivery.status.in_(list(from_statuses))
        if stale_before is not None:
            condition = or_(
                condition,
                and_(
                    NotificationDelivery.status == DeliveryStatus.QUEUED,
                    NotificationDelivery.updated_at < stale_before,
                ),
            )
        stmt = (
            update(NotificationDelivery)
            .where(and_(NotificationDelivery.id == delivery_id, condition))
            .values(status=DeliveryStatus.QUEUED.value, next_retry_at=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed = result.rowcount == 1
        self._lazy.debug(lambda: f"db.claim({delivery_id}) -> {'claimed' if claimed else 'skipped'}")
        return claimed

    async def finish(
        self,
        session: AsyncSession,
        delivery_id: UUID,
        status: str,
        *,
        from_statuses: Iterable[str] = (DeliveryStatus.QUEUED.value,),
        **values: Any,
    ) -> bool:
        """Record the outcome of a claimed delivery.

        The write only lands while the delivery is still in ``from_statuses``,
        so a cancel that committed during the send is not overwritten.

        Args:
            session: Database session
            delivery_id: Delivery primary key
            status: Outcome status
            from_statuses: Statuses the delivery must currently be in
            **values: Other columns to set in the same statement

        Returns:
            True if the outcome was written
        """
        stmt = (
            update(NotificationDelivery)
            .where(
                and_(
                    NotificationDelivery.id == delivery_id,
                    NotificationDelivery.status.in_(list(from_statuses)),
                ),
            )
            .values(status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        finished = result.rowcount == 1
        self._lazy.debug(lambda: f"db.finish({delivery_id}, {status}) -> {'written' if finished else 'stale'}")
        return finished

    async def cancel_open(self, session: AsyncSession, notification_id: UUID, *, reason: str) -> int:
        """Cancel every delivery of a notification that could still be sent.

        Pending, queued and retry-scheduled failed deliveries are cancelled;
        sent and terminally failed ones keep their outcome.

        Returns:
            Number of deliveries cancelled
        """
        stmt = (
            update(NotificationDelivery)
            .where(
                and_(
                    NotificationDelivery.notification_id == notification_id,
                    or_(
                        NotificationDelivery.status.in_([DeliveryStatus.PENDING.value, DeliveryStatus.QUEUED.value]),
                        and_(
                            NotificationDelivery.status == DeliveryStatus.FAILED,
                            NotificationDelivery.next_retry_at.is_not(None),
                        ),
                    ),
                ),
            )
            .values(
                status=DeliveryStatus.CANCELLED.value,
                failure_reason=reason,
                next_retry_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def count_sent_since(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        user_id: str,
        channel: str,
        since: datetime,
    ) -> int:
        """Count successful sends to a recipient on a channel since ``since``."""
        stmt = (
            select(func.count(NotificationDelivery.id))
            .join(Notification, Notification.id == NotificationDelivery.notification_id)
            .where(
                and_(
                    Notification.tenant_id == tenant_id,
                    Notification.user_id == user_id,
                    NotificationDelivery.channel == channel,
                    NotificationDelivery.status == DeliveryStatus.SENT,
                    NotificationDelivery.sent_at >= since,
                ),
            )
        )
        return int((await session.execute(stmt)).scalar_one())

    async def find_retryable(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        max_retries: int | None = None,
        limit: int = 100,
    ) -> Sequence[NotificationDelivery]:
        """Failed deliveries with retry budget left whose backoff has elapsed.

        A failed delivery without ``next_retry_at`` is terminal and never
        returned. The budget is the owning notification's ``max_retries``; ``max_retries``
        here can only lower it. The notification is eagerly loaded.
        """
        stmt = (
            select(NotificationDelivery)
            .join(NotificationDelivery.notification)
            .options(contains_eager(NotificationDelivery.notification))
            .where(
                and_(
                    NotificationDelivery.status == DeliveryStatus.FAILED,
                    NotificationDelivery.retry_count < Notification.max_retries,
                    Notification.status != NotificationStatus.CANCELLED,
                    NotificationDelivery.next_retry_at.is_not(None),
                    NotificationDelivery.next_retry_at <= now,
                ),
            )
            .order_by(NotificationDelivery.next_retry_at)
            .limit(limit)
        )
        if max_retries is not None:
            stmt = stmt.where(NotificationDelivery.retry_count < max_retries)
        items = (await session.execute(stmt)).scalars().all()
        self._lazy.debug(lambda: f"db.find_retryable(limit={limit}) -> {len(items)}")
        return items

    async def find_stale_queued(
        self,
        session: AsyncSession,
        *,
        stale_before: datetime,
        limit: int = 100,
    ) -> Sequence[NotificationDelivery]:
        """Deliveries left in ``queued`` by a worker that never finished."""
        stmt = (
            select(NotificationDelivery)
            .join(NotificationDelivery.notification)
            .options(contains_eager(NotificationDelivery.notification))
            .where(
                and_(
                    NotificationDelivery.status == DeliveryStatus.QUEUED,
                    NotificationDelivery.updated_at < stale_before,
                ),
            )
            .order_by(NotificationDelivery.updated_at)
            .limit(limit)
        )
        return (await session.execute(stmt)).scalars().all()

    async def count_by_channel(
        self,
        session: AsyncSession,
        *,
        since: datetime,
        tenant_id: str | None = None,
    ) -> dict[str, int]:
        """Delivery counts by channel for notifications created since ``since``."""
        stmt = (
            select(NotificationDelivery.channel, func.count(NotificationDelivery.id))
            .join(Notification, Notification.id == NotificationDelivery.notification_id)
            .where(Notification.created_at >= since)
            .group_by(NotificationDelivery.channel)
        )
        if tenant_id is not None:
            stmt = stmt.where(Notification.tenant_id == tenant_id)
        rows = (await session.execute(stmt)).all()
        return {str(channel): int(count) for channel, count in rows}


# Factory functions for dependency injection
_template_repository: NotificationTemplateRepository | None = None
_preference_repository: NotificationPreferenceRepository | None = None
_notification_repository: NotificationRepository | None = None
_delivery_repository: NotificationDeliveryRepository | None = None


def get_notification_template_repository() -> NotificationTemplateRepository:
    """Get NotificationTemplateRepository singleton instance."""
    global _template_repository
    if _template_repository is None:
        _template_repository = NotificationTemplateRepository()
    return _template_repository


def get_notification_preference_repository() -> NotificationPreferenceRepository:
    """Get NotificationPreferenceRepository singleton instance."""
    global _preference_repository
    if _preference_repository is None:
        _preference_repository = NotificationPreferenceRepository()
    return _preference_repository


def get_notification_repository() -> NotificationRepository:
    """Get NotificationRepository singleton instance."""
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository()
    return _notification_repository


def get_notification_delivery_repository() -> NotificationDeliveryRepository:
    """Get NotificationDeliveryRepository singleton instance."""
    global _delivery_repository
    if _delivery_repository is None:
        _delivery_repository = NotificationDeliveryRepository()
    return _delivery_repository
