"""Notification service: creation, processing, retries and maintenance.

Creation is synchronous and durable; sending happens when a queue worker
calls ``process_notification`` (at least once, possibly concurrently and
out of order). Every step is safe to re-run:

- deduplication collapses repeated producer calls onto one notification
- deliveries are claimed with a conditional UPDATE before any send
- terminal deliveries are skipped on re-entry

Collaborators (repositories, queue, channel senders, recipient directory,
event sink, clock) are constructor-injected so tests can substitute fakes.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notify_service.core.database.base import generate_uuid7
from notify_service.core.exceptions import (
    ConflictException,
    NotFoundException,
    ServiceUnavailableException,
    ValidationException,
)
from notify_service.core.services.base import BaseService
from notify_service.core.settings import get_email_settings, get_notification_settings
from notify_service.features.notifications.backoff import compute_backoff
from notify_service.features.notifications.channels import (
    DeliveryResult,
    EmailChannelSender,
    InAppChannelSender,
    SendContext,
)
from notify_service.features.notifications.enums import (
    OPEN_STATUSES,
    DeliveryStatus,
    FailureReason,
    NotificationChannel,
    NotificationStatus,
    QueueLane,
    can_transition,
)
from notify_service.features.notifications.events import (
    DeliveryBlocked,
    DeliveryFailed,
    DeliverySent,
    LoggingEventSink,
    NotificationCompleted,
    NotificationCreated,
    NotificationDeduplicated,
    NotificationEnqueueFailed,
    NotificationQueued,
)
from notify_service.features.notifications.metrics import (
    notification_cleanup_deleted_total,
    notification_completed_total,
    notification_created_total,
    notification_deduplicated_total,
    notification_delivery_blocked_total,
    notification_delivery_duration_seconds,
    notification_delivery_total,
    notification_enqueue_errors_total,
    notification_retry_scheduled_total,
)
from notify_service.features.notifications.models import (
    Notification,
    NotificationDelivery,
    NotificationPreference,
)
from notify_service.features.notifications.preferences import PreferenceEvaluator, local_day_start
from notify_service.features.notifications.recipients import (
    HttpRecipientDirectory,
    StaticRecipientDirectory,
    resolve_recipient,
)
from notify_service.features.notifications.rendering import EmailRenderer
from notify_service.features.notifications.repository import (
    NotificationDeliveryRepository,
    NotificationPreferenceRepository,
    NotificationRepository,
    NotificationTemplateRepository,
    get_notification_delivery_repository,
    get_notification_preference_repository,
    get_notification_repository,
    get_notification_template_repository,
)
from notify_service.features.notifications.schemas import (
    BulkCreateResult,
    CreateResult,
    NotificationStats,
    ProcessResult,
)
from notify_service.infra.email import get_email_provider

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notify_service.core.settings.notifications import NotificationSettings
    from notify_service.features.notifications.channels import ChannelSender
    from notify_service.features.notifications.events import (
        NotificationEvent,
        NotificationEventSink,
    )
    from notify_service.features.notifications.queue import NotificationQueue
    from notify_service.features.notifications.recipients import RecipientDirectory
    from notify_service.features.notifications.schemas import (
        NotificationCreate,
        PreferenceUpdate,
        StatsTimeframe,
    )

STATS_WINDOWS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

# Preference fields where an explicit null is meaningful
NULLABLE_PREFERENCE_FIELDS = frozenset(
    {"quiet_hours_start", "quiet_hours_end", "max_daily_notifications", "email_address"},
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_default_senders() -> dict[str, ChannelSender]:
    """In-app plus email through the configured email provider."""
    email_settings = get_email_settings()
    return {
        NotificationChannel.IN_APP.value: InAppChannelSender(),
        NotificationChannel.EMAIL.value: EmailChannelSender(
            get_email_provider(),
            EmailRenderer(sender_name=email_settings.default_from_name),
            from_email=str(email_settings.default_from_email),
            from_name=email_settings.default_from_name,
        ),
    }


def build_default_directory(settings: NotificationSettings) -> RecipientDirectory:
    if settings.directory_url:
        return HttpRecipientDirectory(settings.directory_url, timeout=settings.directory_timeout_seconds)
    return StaticRecipientDirectory()


@dataclass(slots=True)
class _Outcome:
    delivery: NotificationDelivery
    result: DeliveryResult
    retry_delay: timedelta | None = None


class NotificationService(BaseService):
    """Create, process, retry and maintain notifications.

    Provides:
    - Idempotent creation with deduplication keys and priority-lane enqueueing
    - Processing with expiry, preference gating and concurrent channel sends
    - Exponential backoff retries owned by the delivery record
    - Cancellation, statistics, retention cleanup and preference management
    """

    def __init__(
        self,
        *,
        notification_repository: NotificationRepository | None = None,
        delivery_repository: NotificationDeliveryRepository | None = None,
        preference_repository: NotificationPreferenceRepository | None = None,
        template_repository: NotificationTemplateRepository | None = None,
        queue: NotificationQueue | None = None,
        senders: Mapping[str, ChannelSender] | None = None,
        directory: RecipientDirectory | None = None,
        evaluator: PreferenceEvaluator | None = None,
        event_sink: NotificationEventSink | None = None,
        settings: NotificationSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize with collaborators; omitted ones use process defaults.

        Args:
            notification_repository: Notification queries
            delivery_repository: Delivery queries and claims
            preference_repository: Preference lookups
            template_repository: Email template lookups
            queue: Lane-aware queue (defaults to the taskiq-backed queue)
            senders: Channel name to sender mapping
            directory: Recipient directory for account emails
            evaluator: Preference evaluator
            event_sink: Lifecycle event sink
            settings: Notification settings
            clock: Source of the current UTC time
        """
        super().__init__()
        self._settings = settings or get_notification_settings()
        self._notifications = notification_repository or get_notification_repository()
        self._deliveries = delivery_repository or get_notification_delivery_repository()
        self._preferences = preference_repository or get_notification_preference_repository()
        self._templates = template_repository or get_notification_template_repository()
        self._queue = queue
        self._senders: dict[str, ChannelSender] = dict(senders) if senders is not None else build_default_senders()
        self._directory = directory or build_default_directory(self._settings)
        self._evaluator = evaluator or PreferenceEvaluator()
        self._events: NotificationEventSink = event_sink or LoggingEventSink()
        self._clock = clock or _utcnow

    @property
    def queue(self) -> NotificationQueue:
        if self._queue is None:
            from notify_service.features.notifications.queue import get_notification_queue

            self._queue = get_notification_queue()
        return self._queue

    # =========================================================================
    # Creation
    # =========================================================================

    def _requested_channels(self, request: NotificationCreate) -> list[str]:
        channels = [str(c) for c in request.channels] if request.channels else list(self._settings.default_channels)
        unsupported = [c for c in channels if c not in self._senders]
        if unsupported:
            raise ValidationException(
                detail=f"Unsupported channel(s): {', '.join(unsupported)}",
                type="invalid-channel",
                extra={"channels": unsupported},
            )
        return channels

    async def create_notification(
        self,
        session: AsyncSession,
        request: NotificationCreate,
        *,
        batch_id: str | None = None,
    ) -> CreateResult:
        """Persist a notification and its deliveries, then enqueue it.

        A deduplication key matching a queued or sent notification of the same
        tenant returns that notification unchanged with ``deduplicated=True``.
        Channels without a resolvable address get no delivery, and a directory
        outage only drops the channels that needed it. A failed publish
        leaves the notification ``pending`` for the pending sweep; producers
        never see downstream failures.

        Args:
            session: Database session
            request: Validated creation request
            batch_id: Bulk batch identifier to stamp on the notification

        Returns:
            CreateResult with the notification, its deliveries and the dedup flag

        Raises:
            ValidationException: If a requested channel has no sender
        """
        channels = self._requested_channels(request)

        if request.deduplication_key:
            existing = await self._notifications.find_by_dedup_key(
                session,
                request.tenant_id,
                request.deduplication_key,
            )
            if existing is not None:
                notification_deduplicated_total.labels(category=existing.category).inc()
                self.logger.info(
                    "Duplicate notification request collapsed",
                    extra={
                        "notification_id": str(existing.id),
                        "tenant_id": existing.tenant_id,
                        "deduplication_key": request.deduplication_key,
                        "status": existing.status,
                    },
                )
                await self._emit(
                    NotificationDeduplicated(
                        tenant_id=existing.tenant_id,
                        notification_id=str(existing.id),
                        deduplication_key=request.deduplication_key,
                        existing_status=existing.status,
                    ),
                )
                return CreateResult(notification=existing, deliveries=list(existing.deliveries), deduplicated=True)

        preferences = await self._preferences.get_for_user(session, request.tenant_id, request.user_id)

        deliveries: list[NotificationDelivery] = []
        for channel in channels:
            try:
                recipient = await resolve_recipient(
                    channel,
                    tenant_id=request.tenant_id,
                    user_id=request.user_id,
                    preferences=preferences,
                    directory=self._directory,
                )
            except ServiceUnavailableException as exc:
                self.logger.warning(
                    "Recipient directory unavailable, skipping channel",
                    extra={
                        "tenant_id": request.tenant_id,
                        "user_id": request.user_id,
                        "channel": channel,
                        "error": exc.detail,
                    },
                )
                continue
            if recipient is None:
                self._lazy.debug(lambda channel=channel: f"No {channel} address for user {request.user_id}, skipping")
                continue
            deliveries.append(
                NotificationDelivery(
                    channel=channel,
                    recipient=recipient,
                    status=DeliveryStatus.PENDING.value,
                    retry_count=0,
                    cost=0,
                ),
            )

        notification = Notification(
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            membership_id=request.membership_id,
            type=request.type,
            category=request.category.value,
            priority=request.priority.value,
            title=request.title,
            message=request.message,
            action_url=request.action_url,
            action_label=request.action_label,
            data=request.data,
            template_id=request.template_id,
            template_variables=request.template_variables,
            scheduled_for=request.scheduled_for,
            expires_at=request.expires_at,
            deduplication_key=request.deduplication_key,
            group_key=request.group_key,
            parent_id=request.parent_id,
            source=request.source,
            batch_id=batch_id,
            max_retries=request.max_retries if request.max_retries is not None else self._settings.max_retries,
            status=NotificationStatus.PENDING.value,
            deliveries=deliveries,
        )
        await self._notifications.create(session, notification)
        await session.commit()

        notification_created_total.labels(category=notification.category, priority=notification.priority).inc()
        self.logger.info(
            "Notification created",
            extra={
                "notification_id": str(notification.id),
                "tenant_id": notification.tenant_id,
                "type": notification.type,
                "channels": [d.channel for d in deliveries],
                "scheduled_for": notification.scheduled_for.isoformat() if notification.scheduled_for else None,
            },
        )
        await self._emit(
            NotificationCreated(
                tenant_id=notification.tenant_id,
                notification_id=str(notification.id),
                user_id=notification.user_id,
                type=notification.type,
                category=notification.category,
                priority=notification.priority,
                channels=[d.channel for d in deliveries],
                scheduled_for=notification.scheduled_for,
            ),
        )

        await self._enqueue(session, notification)
        return CreateResult(notification=notification, deliveries=deliveries, deduplicated=False)

    async def create_bulk(
        self,
        session: AsyncSession,
        requests: Sequence[NotificationCreate],
    ) -> BulkCreateResult:
        """Create many notifications under one generated ``batch_id``.

        Each request is deduplicated independently. Channels are validated for
        every request before the first one is persisted.
        """
        for request in requests:
            self._requested_channels(request)

        batch = BulkCreateResult(batch_id=generate_uuid7().hex)
        for request in requests:
            batch.results.append(await self.create_notification(session, request, batch_id=batch.batch_id))

        self.logger.info(
            "Bulk notifications created",
            extra={"batch_id": batch.batch_id, "created": batch.created, "deduplicated": batch.deduplicated},
        )
        return batch

    async def _enqueue(
        self,
        session: AsyncSession,
        notification: Notification,
        *,
        apply_batch_delay: bool = True,
    ) -> bool:
        """Hand a notification to the queue and mark it queued.

        Returns:
            True if the queue accepted the job
        """
        now = self._clock()
        schedule_id: str | None = None
        try:
            if notification.scheduled_for is not None and notification.scheduled_for > now:
                handle = await self.queue.schedule(
                    notification.id,
                    notification.tenant_id,
                    notification.scheduled_for,
                    priority=notification.priority,
                )
                schedule_id = handle.schedule_id if handle else None
                lane = handle.lane if handle else QueueLane.for_priority(notification.priority).value
                delay = 0
            else:
                delay = await self.queue.enqueue_immediate(
                    notification.id,
                    notification.tenant_id,
                    priority=notification.priority,
                    apply_batch_delay=apply_batch_delay,
                )
                lane = QueueLane.for_priority(notification.priority).value
        except Exception as exc:
            notification_enqueue_errors_total.inc()
            self.logger.warning(
                "Failed to enqueue notification, leaving it pending for the sweep",
                extra={"notification_id": str(notification.id), "error": str(exc)},
            )
            await self._emit(
                NotificationEnqueueFailed(
                    tenant_id=notification.tenant_id,
                    notification_id=str(notification.id),
                    error=str(exc),
                ),
            )
            return False

        # A fast worker may already have moved the row past queued. A stale
        # scheduled row is already queued; publishing it spends the schedule.
        await self._notifications.set_status(
            session,
            notification.id,
            NotificationStatus.QUEUED.value,
            from_statuses=[NotificationStatus.PENDING.value, NotificationStatus.QUEUED.value],
            schedule_id=schedule_id,
        )
        await session.commit()
        await session.refresh(notification, attribute_names=["status", "schedule_id", "updated_at"])

        await self._emit(
            NotificationQueued(
                tenant_id=notification.tenant_id,
                notification_id=str(notification.id),
                lane=lane,
                delay_seconds=delay,
                schedule_id=schedule_id,
            ),
        )
        return True

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_notification(self, session: AsyncSession, notification_id: UUID) -> ProcessResult:
        """Queue entry point: gate, send and aggregate one notification.

        Safe to call repeatedly and concurrently for the same id. A missing
        notification is a no-op; an expired one is cancelled without sending.
        """
        now = self._clock()
        notification = await self._notifications.get_with_deliveries(session, notification_id)
        if notification is None:
            self.logger.info("Notification not found, nothing to process", extra={"notification_id": str(notification_id)})
            return ProcessResult(notification_id=notification_id, status=None, found=False)

        if notification.is_terminal:
            return ProcessResult(
                notification_id=notification.id,
                status=notification.status,
                skipped=len(notification.deliveries),
            )

        if notification.expires_at is not None and notification.expires_at <= now:
            await self._expire(session, notification)
            return ProcessResult(
                notification_id=notification.id,
                status=notification.status,
                skipped=len(notification.deliveries),
            )

        # Processing has started; the schedule is spent
        if not await self._notifications.set_status(
            session,
            notification.id,
            NotificationStatus.QUEUED.value,
            from_statuses=OPEN_STATUSES,
            schedule_id=None,
        ):
            # Cancelled or completed since it was loaded
            await self._refresh(session, notification)
            return ProcessResult(
                notification_id=notification.id,
                status=notification.status,
                skipped=len(notification.deliveries),
            )

        stale_before = now - timedelta(minutes=self._settings.stale_delivery_minutes)
        claimed: list[NotificationDelivery] = []
        skipped = 0
        for delivery in notification.deliveries:
            if delivery.status not in (DeliveryStatus.PENDING, DeliveryStatus.QUEUED):
                skipped += 1
                continue
            if await self._deliveries.claim(
                session,
                delivery.id,
                from_statuses=[DeliveryStatus.PENDING.value],
                stale_before=stale_before,
            ):
                claimed.append(delivery)
            else:
                skipped += 1

        allowed, blocked = await self._apply_preferences(session, notification, claimed, now)
        await session.commit()
        await self._refresh(session, notification)

        outcomes = await self._dispatch(session, notification, allowed)
        return ProcessResult(
            notification_id=notification.id,
            status=notification.status,
            sent=sum(1 for o in outcomes if o.result.success),
            failed=sum(1 for o in outcomes if not o.result.success),
            blocked=blocked,
            skipped=skipped,
        )

    async def _apply_preferences(
        self,
        session: AsyncSession,
        notification: Notification,
        deliveries: Sequence[NotificationDelivery],
        now: datetime,
    ) -> tuple[list[NotificationDelivery], int]:
        """Cancel deliveries the recipient's preferences block.

        Returns:
            (deliveries allowed to send, number blocked)
        """
        if not deliveries:
            return [], 0

        preferences = await self._preferences.get_for_user(session, notification.tenant_id, notification.user_id)
        sent_today: dict[str, int] = {}
        reserved: Counter[str] = Counter()
        allowed: list[NotificationDelivery] = []
        blocked = 0

        for delivery in deliveries:
            decision = self._evaluator.check_static(
                preferences,
                channel=delivery.channel,
                category=notification.category,
                priority=notification.priority,
                now=now,
            )
            if decision.allowed and preferences is not None and preferences.max_daily_notifications is not None:
                if delivery.channel not in sent_today:
                    sent_today[delivery.channel] = await self._deliveries.count_sent_since(
                        session,
                        tenant_id=notification.tenant_id,
                        user_id=notification.user_id,
                        channel=delivery.channel,
                        since=local_day_start(now, preferences.timezone),
                    )
                decision = self._evaluator.check_daily_cap(
                    preferences,
                    sent_today[delivery.channel] + reserved[delivery.channel],
                )

            if decision.allowed:
                reserved[delivery.channel] += 1
                allowed.append(delivery)
                continue

            reason = decision.reason.value if decision.reason else "blocked"
            if not await self._deliveries.finish(
                session,
                delivery.id,
                DeliveryStatus.CANCELLED.value,
                failure_reason=reason,
                next_retry_at=None,
            ):
                continue
            blocked += 1
            notification_delivery_blocked_total.labels(channel=delivery.channel, reason=reason).inc()
            self.logger.info(
                "Delivery blocked by preferences",
                extra={"delivery_id": str(delivery.id), "channel": delivery.channel, "reason": reason},
            )
            await self._emit(
                DeliveryBlocked(
                    tenant_id=notification.tenant_id,
                    notification_id=str(notification.id),
                    delivery_id=str(delivery.id),
                    channel=delivery.channel,
                    reason=reason,
                ),
            )

        return allowed, blocked

    async def _build_context(self, session: AsyncSession, notification: Notification, channels: Iterable[str]) -> SendContext:
        """Load what senders need before the sends start."""
        template = None
        recipient_name = None
        if NotificationChannel.EMAIL in set(channels):
            if notification.template_id:
                template = await self._templates.get_active(session, notification.template_id)
            try:
                profile = await self._directory.get_profile(notification.tenant_id, notification.user_id)
            except ServiceUnavailableException:
                # The address is already stored on the delivery; only the display name is lost
                self.logger.warning(
                    "Recipient directory unavailable, sending without display name",
                    extra={"notification_id": str(notification.id)},
                )
                profile = None
            recipient_name = profile.name if profile is not None else None
        return SendContext(template=template, recipient_name=recipient_name)

    async def _send_one(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        sender = self._senders.get(delivery.channel)
        if sender is None:
            return DeliveryResult.failed(
                f"No sender registered for channel '{delivery.channel}'",
                FailureReason.UNSUPPORTED_CHANNEL.value,
                retryable=False,
            )

        timeout = self._settings.send_timeout_seconds
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(sender.send(notification, delivery, context), timeout=timeout)
        except TimeoutError:
            self.logger.warning(
                "Channel send timed out",
                extra={"delivery_id": str(delivery.id), "channel": delivery.channel, "timeout": timeout},
            )
            return DeliveryResult.failed(
                f"Send timed out after {timeout:g}s",
                FailureReason.SEND_TIMEOUT.value,
            )
        except Exception as exc:
            self.logger.exception(
                "Channel sender raised",
                extra={"delivery_id": str(delivery.id), "channel": delivery.channel},
            )
            return DeliveryResult.failed(str(exc) or type(exc).__name__, "unexpected_error")
        finally:
            notification_delivery_duration_seconds.labels(channel=delivery.channel).observe(
                time.perf_counter() - started,
            )

    async def _dispatch(
        self,
        session: AsyncSession,
        notification: Notification,
        deliveries: Sequence[NotificationDelivery],
    ) -> list[_Outcome]:
        """Send claimed deliveries concurrently, then record and aggregate.

        Sends never touch the session; outcomes are written one by one after
        every send has settled, followed by the aggregate status. Each write
        is conditional, so a cancel that lands mid-send stays in force.
        """
        outcomes: list[_Outcome] = []
        if deliveries:
            context = await self._build_context(session, notification, (d.channel for d in deliveries))
            results = await asyncio.gather(*(self._send_one(notification, d, context) for d in deliveries))
            finished_at = self._clock()
            for delivery, result in zip(deliveries, results, strict=True):
                outcome = await self._record_outcome(session, notification, delivery, result, finished_at)
                if outcome is not None:
                    outcomes.append(outcome)

        completed = await self._aggregate(session, notification)
        await session.commit()

        for outcome in outcomes:
            await self._report_outcome(notification, outcome)
            if outcome.retry_delay is not None:
                await self._queue_retry(notification, outcome.delivery, outcome.retry_delay)

        if completed:
            notification_completed_total.labels(status=notification.status).inc()
            self.logger.info(
                "Notification completed",
                extra={
                    "notification_id": str(notification.id),
                    "status": notification.status,
                    "failure_reason": notification.failure_reason,
                },
            )
            await self._emit(
                NotificationCompleted(
                    tenant_id=notification.tenant_id,
                    notification_id=str(notification.id),
                    status=notification.status,
                    reason=notification.failure_reason,
                ),
            )
        return outcomes

    async def _record_outcome(
        self,
        session: AsyncSession,
        notification: Notification,
        delivery: NotificationDelivery,
        result: DeliveryResult,
        finished_at: datetime,
    ) -> _Outcome | None:
        """Write one send result onto its still-claimed delivery.

        Returns:
            The recorded outcome, or None if the delivery was cancelled while
            the send was in flight
        """
        retry_delay: timedelta | None = None
        if result.success:
            status = DeliveryStatus.SENT.value
            values = {
                "sent_at": finished_at,
                "external_id": result.external_id,
                "cost": result.cost,
                "channel_response": result.response or None,
                "failure_reason": None,
                "next_retry_at": None,
            }
        else:
            status = DeliveryStatus.FAILED.value
            values, retry_delay = self._failure_values(
                delivery,
                result,
                finished_at,
                max_retries=notification.max_retries,
            )

        if not await self._deliveries.finish(session, delivery.id, status, **values):
            self.logger.warning(
                "Delivery finished elsewhere during the send, outcome discarded",
                extra={
                    "delivery_id": str(delivery.id),
                    "channel": delivery.channel,
                    "success": result.success,
                },
            )
            return None
        return _Outcome(delivery=delivery, result=result, retry_delay=retry_delay)

    def _failure_values(
        self,
        delivery: NotificationDelivery,
        result: DeliveryResult,
        failed_at: datetime,
        *,
        max_retries: int,
    ) -> tuple[dict[str, Any], timedelta | None]:
        """Columns for a failed attempt and the delay before the next one.

        The backoff uses the failure count before this attempt (1, 2, 4 ...
        minutes). Non-retryable errors are terminal immediately.

        Returns:
            (column values, delay before the next attempt or None if terminal)
        """
        delay = compute_backoff(
            delivery.retry_count,
            base_delay=timedelta(seconds=self._settings.retry_base_delay_seconds),
            max_delay=timedelta(seconds=self._settings.retry_max_delay_seconds),
        )
        retry_count = delivery.retry_count + 1
        values: dict[str, Any] = {
            "retry_count": retry_count,
            "failure_reason": result.error_message or result.error_category or "delivery failed",
            "cost": 0,
            "channel_response": result.response or None,
            "next_retry_at": None,
        }
        if result.retryable and retry_count < max_retries:
            values["next_retry_at"] = failed_at + delay
            return values, delay
        return values, None

    async def _aggregate(self, session: AsyncSession, notification: Notification) -> bool:
        """Derive and store the notification status from its deliveries.

        Any sent delivery makes the notification sent. It fails only when every
        delivery is terminal without a success; while retries are pending it
        stays queued. The write is conditional on the notification still being
        open.

        Returns:
            True if this call completed the notification
        """
        await self._refresh(session, notification)
        target = self._aggregate_status(notification.deliveries)
        if target is None:
            return False
        status, reason, sent_at = target
        if not can_transition(notification.status, status) or notification.status == status:
            return False

        if not await self._notifications.set_status(
            session,
            notification.id,
            status,
            from_statuses=OPEN_STATUSES,
            failure_reason=reason,
            sent_at=sent_at,
        ):
            await self._refresh(session, notification)
            return False
        await session.refresh(notification, attribute_names=["status", "failure_reason", "sent_at", "updated_at"])
        return True

    @staticmethod
    def _aggregate_status(
        deliveries: Sequence[NotificationDelivery],
    ) -> tuple[str, str | None, datetime | None] | None:
        """Target (status, failure reason, sent_at) or None to stay queued."""
        sent = [d for d in deliveries if d.status == DeliveryStatus.SENT]
        if sent:
            # sent_at marks the first successful delivery
            first = min((d.sent_at for d in sent if d.sent_at is not None), default=None)
            return NotificationStatus.SENT.value, None, first

        if not deliveries:
            return NotificationStatus.FAILED.value, FailureReason.NO_DELIVERIES.value, None

        if all(d.is_terminal for d in deliveries):
            if all(d.status == DeliveryStatus.CANCELLED for d in deliveries):
                return NotificationStatus.FAILED.value, FailureReason.ALL_DELIVERIES_BLOCKED.value, None
            return NotificationStatus.FAILED.value, FailureReason.ALL_DELIVERIES_FAILED.value, None
        return None

    async def _refresh(self, session: AsyncSession, notification: Notification) -> None:
        """Reload a notification and its deliveries in place."""
        await self._notifications.get_with_deliveries(session, notification.id)

    async def _report_outcome(self, notification: Notification, outcome: _Outcome) -> None:
        delivery, result = outcome.delivery, outcome.result
        if result.success:
            notification_delivery_total.labels(channel=delivery.channel, outcome="sent").inc()
            await self._emit(
                DeliverySent(
                    tenant_id=notification.tenant_id,
                    notification_id=str(notification.id),
                    delivery_id=str(delivery.id),
                    channel=delivery.channel,
                    external_id=delivery.external_id,
                ),
            )
            return

        terminal = outcome.retry_delay is None
        notification_delivery_total.labels(
            channel=delivery.channel,
            outcome="failed" if terminal else "retrying",
        ).inc()
        self.logger.warning(
            "Delivery failed",
            extra={
                "delivery_id": str(delivery.id),
                "channel": delivery.channel,
                "error": result.error_message,
                "error_category": result.error_category,
                "retry_count": delivery.retry_count,
                "terminal": terminal,
            },
        )
        await self._emit(
            DeliveryFailed(
                tenant_id=notification.tenant_id,
                notification_id=str(notification.id),
                delivery_id=str(delivery.id),
                channel=delivery.channel,
                error=result.error_message,
                retry_count=delivery.retry_count,
                next_retry_at=delivery.next_retry_at,
                terminal=terminal,
            ),
        )

    async def _queue_retry(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        delay: timedelta,
    ) -> None:
        notification_retry_scheduled_total.labels(channel=delivery.channel).inc()
        try:
            await self.queue.queue_retry(
                delivery.id,
                notification.tenant_id,
                delay_seconds=int(delay.total_seconds()),
            )
        except Exception as exc:
            # next_retry_at is stored; the retry sweep will pick it up
            self.logger.warning(
                "Failed to enqueue delivery retry",
                extra={"delivery_id": str(delivery.id), "error": str(exc)},
            )

    async def _expire(self, session: AsyncSession, notification: Notification) -> None:
        """Cancel an expired notification and every unfinished delivery."""
        cancelled = await self._deliveries.cancel_open(session, notification.id, reason=FailureReason.EXPIRED.value)
        became_cancelled = await self._notifications.set_status(
            session,
            notification.id,
            NotificationStatus.CANCELLED.value,
            from_statuses=OPEN_STATUSES,
            failure_reason=FailureReason.EXPIRED.value,
            schedule_id=None,
        )
        await session.commit()
        await self._refresh(session, notification)

        self.logger.info(
            "Notification expired before delivery",
            extra={"notification_id": str(notification.id), "cancelled_deliveries": cancelled},
        )
        if became_cancelled:
            notification_completed_total.labels(status=NotificationStatus.CANCELLED.value).inc()
            await self._emit(
                NotificationCompleted(
                    tenant_id=notification.tenant_id,
                    notification_id=str(notification.id),
                    status=NotificationStatus.CANCELLED.value,
                    reason=FailureReason.EXPIRED.value,
                ),
            )

    # =========================================================================
    # Retries and sweeps
    # =========================================================================

    async def retry_delivery(
        self,
        session: AsyncSession,
        delivery_id: UUID,
        *,
        force: bool = False,
    ) -> ProcessResult | None:
        """Re-attempt one failed (or abandoned queued) delivery.

        Expiry is checked first. Unless ``force`` is set, a delivery whose
        backoff has not elapsed or whose retry budget is spent is left alone.

        Returns:
            ProcessResult for the owning notification, or None if the delivery
            no longer exists
        """
        now = self._clock()
        delivery = await self._deliveries.get(session, delivery_id)
        if delivery is None:
            self.logger.info("Delivery not found, nothing to retry", extra={"delivery_id": str(delivery_id)})
            return None

        notification = await self._notifications.get_with_deliveries(session, delivery.notification_id)
        if notification is None:
            return None
        delivery = next(d for d in notification.deliveries if d.id == delivery_id)
        result = ProcessResult(notification_id=notification.id, status=notification.status)

        if notification.expires_at is not None and notification.expires_at <= now:
            await self._expire(session, notification)
            result.status = notification.status
            result.skipped = 1
            return result

        if notification.status == NotificationStatus.CANCELLED:
            result.skipped = 1
            return result

        if delivery.status == DeliveryStatus.FAILED and not force:
            # No next_retry_at means the failure was terminal
            due = delivery.next_retry_at is not None and delivery.next_retry_at <= now
            if not due or delivery.retry_count >= notification.max_retries:
                result.skipped = 1
                return result
        elif delivery.status not in (DeliveryStatus.FAILED, DeliveryStatus.QUEUED):
            result.skipped = 1
            return result

        stale_before = now - timedelta(minutes=self._settings.stale_delivery_minutes)
        if not await self._deliveries.claim(
            session,
            delivery.id,
            from_statuses=[DeliveryStatus.FAILED.value],
            stale_before=stale_before,
        ):
            result.skipped = 1
            return result

        await session.commit()
        await self._refresh(session, notification)

        self.logger.info(
            "Retrying delivery",
            extra={"delivery_id": str(delivery.id), "channel": delivery.channel, "retry_count": delivery.retry_count},
        )
        outcomes = await self._dispatch(session, notification, [delivery])
        result.status = notification.status
        result.sent = sum(1 for o in outcomes if o.result.success)
        result.failed = sum(1 for o in outcomes if not o.result.success)
        return result

    async def retry_failed_deliveries(
        self,
        session: AsyncSession,
        *,
        max_retries: int | None = None,
        limit: int | None = None,
    ) -> dict[str, int]:
        """Retry sweep: re-dispatch due failed deliveries and abandoned claims.

        Each delivery is published to the retry lane rather than sent inline.

        Returns:
            Counts of ``retried`` (due failures) and ``reclaimed`` (stale queued)
        """
        now = self._clock()
        batch = limit or self._settings.retry_batch_size
        due = await self._deliveries.find_retryable(session, now=now, max_retries=max_retries, limit=batch)
        stale = await self._deliveries.find_stale_queued(
            session,
            stale_before=now - timedelta(minutes=self._settings.stale_delivery_minutes),
            limit=batch,
        )

        counts = {"retried": 0, "reclaimed": 0}
        for key, deliveries in (("retried", due), ("reclaimed", stale)):
            for delivery in deliveries:
                try:
                    await self.queue.queue_retry(delivery.id, delivery.notification.tenant_id)
                except Exception as exc:
                    self.logger.warning(
                        "Failed to enqueue delivery retry",
                        extra={"delivery_id": str(delivery.id), "error": str(exc)},
                    )
                    continue
                counts[key] += 1

        if counts["retried"] or counts["reclaimed"]:
            self.logger.info("Retry sweep dispatched deliveries", extra=counts)
        return counts

    async def enqueue_pending(self, session: AsyncSession, *, limit: int | None = None) -> int:
        """Pending sweep: publish notifications that never reached a worker.

        Returns:
            Number of notifications handed to the queue
        """
        now = self._clock()
        due = await self._notifications.find_due_pending(
            session,
            now=now,
            stale_scheduled_before=now - timedelta(minutes=self._settings.stale_delivery_minutes),
            limit=limit or self._settings.pending_batch_size,
        )
        enqueued = 0
        for notification in due:
            if await self._enqueue(session, notification, apply_batch_delay=False):
                enqueued += 1
        if due:
            self.logger.info("Pending sweep enqueued notifications", extra={"found": len(due), "enqueued": enqueued})
        return enqueued

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel_notification(
        self,
        session: AsyncSession,
        tenant_id: str,
        notification_id: UUID,
        reason: str = FailureReason.CANCELLED_BY_PRODUCER.value,
    ) -> Notification:
        """Void a notification that has not finished.

        Raises:
            NotFoundException: If the notification does not exist in the tenant
            ConflictException: If it is already sent, failed or cancelled
        """
        notification = await self._notifications.get_with_deliveries(session, notification_id, tenant_id=tenant_id)
        if notification is None:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        if notification.is_terminal:
            raise self._terminal_conflict(notification)

        schedule_id = notification.schedule_id
        if not await self._notifications.set_status(
            session,
            notification.id,
            NotificationStatus.CANCELLED.value,
            from_statuses=OPEN_STATUSES,
            failure_reason=reason,
            schedule_id=None,
        ):
            # A worker completed it after it was loaded
            await self._refresh(session, notification)
            raise self._terminal_conflict(notification)

        await self._deliveries.cancel_open(session, notification.id, reason=reason)
        await session.commit()
        await self._refresh(session, notification)

        if schedule_id:
            await self.queue.cancel_schedule(schedule_id)

        notification_completed_total.labels(status=NotificationStatus.CANCELLED.value).inc()
        self.logger.info(
            "Notification cancelled",
            extra={"notification_id": str(notification.id), "tenant_id": tenant_id, "reason": reason},
        )
        await self._emit(
            NotificationCompleted(
                tenant_id=tenant_id,
                notification_id=str(notification.id),
                status=NotificationStatus.CANCELLED.value,
                reason=reason,
            ),
        )
        return notification

    @staticmethod
    def _terminal_conflict(notification: Notification) -> ConflictException:
        return ConflictException(
            detail=f"Notification is already {notification.status}",
            type="notification-terminal",
            extra={"notification_id": str(notification.id), "current_status": notification.status},
        )

    # =========================================================================
    # Queries and maintenance
    # =========================================================================

    async def get_notification(self, session: AsyncSession, tenant_id: str, notification_id: UUID) -> Notification:
        """Get a notification with its deliveries.

        Raises:
            NotFoundException: If it does not exist in the tenant
        """
        notification = await self._notifications.get_with_deliveries(session, notification_id, tenant_id=tenant_id)
        if notification is None:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        return notification

    async def get_stats(
        self,
        session: AsyncSession,
        *,
        tenant_id: str | None = None,
        timeframe: StatsTimeframe = "24h",
    ) -> NotificationStats:
        """Counts by status, category and channel over a rolling window."""
        window = STATS_WINDOWS.get(timeframe)
        if window is None:
            raise ValidationException(
                detail=f"Unknown timeframe '{timeframe}'",
                type="invalid-timeframe",
                extra={"allowed": sorted(STATS_WINDOWS)},
            )
        since = self._clock() - window
        by_status = await self._notifications.count_by(session, Notification.status, since=since, tenant_id=tenant_id)
        by_category = await self._notifications.count_by(
            session,
            Notification.category,
            since=since,
            tenant_id=tenant_id,
        )
        by_channel = await self._deliveries.count_by_channel(session, since=since, tenant_id=tenant_id)
        return NotificationStats(
            tenant_id=tenant_id,
            timeframe=timeframe,
            since=since,
            total=sum(by_status.values()),
            by_status=by_status,
            by_category=by_category,
            by_channel=by_channel,
        )

    async def cleanup(self, session: AsyncSession, retention_days: int | None = None) -> int:
        """Delete terminal notifications older than the retention window.

        ``pending`` and ``queued`` notifications are never deleted.

        Returns:
            Number of notifications deleted
        """
        days = retention_days if retention_days is not None else self._settings.retention_days
        if days < 0:
            raise ValidationException(detail="retention_days cannot be negative", type="invalid-retention")
        cutoff = self._clock() - timedelta(days=days)
        deleted = await self._notifications.delete_terminal_before(session, cutoff)
        await session.commit()

        notification_cleanup_deleted_total.inc(deleted)
        self.logger.info(
            "Notification cleanup finished",
            extra={"retention_days": days, "cutoff": cutoff.isoformat(), "deleted": deleted},
        )
        return deleted

    # =========================================================================
    # Preferences
    # =========================================================================

    async def get_preferences(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> NotificationPreference | None:
        return await self._preferences.get_for_user(session, tenant_id, user_id)

    async def upsert_preferences(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        update: PreferenceUpdate,
    ) -> NotificationPreference:
        """Create or partially update a recipient's preferences.

        Raises:
            ValidationException: If the timezone is not a known IANA zone
        """
        values = update.model_dump(exclude_unset=True)
        if values.get("timezone"):
            try:
                ZoneInfo(values["timezone"])
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationException(
                    detail=f"Unknown timezone '{values['timezone']}'",
                    type="invalid-timezone",
                ) from exc
        values = {key: value for key, value in values.items() if value is not None or key in NULLABLE_PREFERENCE_FIELDS}
        if values.get("digest_frequency") is not None:
            values["digest_frequency"] = str(values["digest_frequency"])

        preference = await self._preferences.upsert(session, tenant_id, user_id, values)
        await session.commit()
        self.logger.info(
            "Notification preferences saved",
            extra={"tenant_id": tenant_id, "user_id": user_id, "fields": sorted(values)},
        )
        return preference

    async def _emit(self, event: NotificationEvent) -> None:
        await self._events.emit(event)


# Singleton instance
_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the singleton NotificationService instance."""
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
