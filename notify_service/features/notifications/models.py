"""SQLAlchemy models for the notification delivery engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notify_service.core.database import (
    StringArray,
    TenantMixin,
    UTCDateTime,
    UUIDv7TimestampedBase,
)

# JSONB on PostgreSQL, JSON text on SQLite
JSONType = JSONB().with_variant(JSON(), "sqlite")


class NotificationTemplate(UUIDv7TimestampedBase):
    """Reusable email body keyed by a stable ``template_id``.

    Bodies use ``{{variable}}`` placeholders filled from the notification's
    ``template_variables``. Only active templates are used for rendering.
    """

    __tablename__ = "notification_templates"

    template_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Stable template identifier referenced by producers",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Notification type this template renders",
    )
    channel: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="email",
        comment="Channel the template targets",
    )
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text(), nullable=False, comment="Body with {{placeholders}}")
    variables: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Variable names the body expects",
    )
    is_active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer(), nullable=False, default=1)


class NotificationPreference(UUIDv7TimestampedBase, TenantMixin):
    """Per-recipient, per-tenant delivery preferences.

    Absence of a row means every channel and category is allowed with no
    quiet hours and no daily cap. Category toggles apply to all channels.

    Unique constraint: (tenant_id, user_id)
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Recipient user identifier",
    )

    # Channel toggles
    enable_in_app: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_email: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)

    # Category toggles
    enable_billing: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_retention: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_engagement: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_workflow: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_social: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    enable_system: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=False,
        comment="System notices are opt-in",
    )

    # Timing
    quiet_hours_start: Mapped[int | None] = mapped_column(
        Integer(),
        nullable=True,
        comment="Quiet hours start hour (0-23, recipient timezone, inclusive)",
    )
    quiet_hours_end: Mapped[int | None] = mapped_column(
        Integer(),
        nullable=True,
        comment="Quiet hours end hour (0-23, recipient timezone, inclusive)",
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        comment="IANA timezone for quiet hours and the daily cap",
    )
    max_daily_notifications: Mapped[int | None] = mapped_column(
        Integer(),
        nullable=True,
        default=10,
        comment="Successful sends allowed per channel per local day (NULL = unlimited)",
    )
    digest_frequency: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="immediate",
        comment="immediate, daily or weekly",
    )
    email_address: Mapped[str | None] = mapped_column(
        String(320),
        nullable=True,
        comment="Per-tenant override for the email channel address",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_notification_preferences_tenant_user"),
        CheckConstraint(
            "quiet_hours_start IS NULL OR (quiet_hours_start >= 0 AND quiet_hours_start <= 23)",
            name="quiet_hours_start_range",
        ),
        CheckConstraint(
            "quiet_hours_end IS NULL OR (quiet_hours_end >= 0 AND quiet_hours_end <= 23)",
            name="quiet_hours_end_range",
        ),
    )


class Notification(UUIDv7TimestampedBase, TenantMixin):
    """One logical event a recipient should be told about.

    Status moves monotonically: pending -> queued -> sent | failed | cancelled.
    Channel attempts live in NotificationDelivery rows owned by this record.

    Indexes:
        - (tenant_id, user_id) for recipient lookups and the daily cap
        - (deduplication_key, status) for idempotent creation
        - (status, scheduled_for) for the pending sweep
        - (status, created_at) for retention cleanup
    """

    __tablename__ = "notifications"

    # Recipient
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Recipient user identifier",
    )
    membership_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Recipient membership within the tenant",
    )

    # Classification
    type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Free-form event tag set by the producer",
    )
    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="billing, retention, engagement, workflow, system, social",
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="normal",
        comment="low, normal, high, critical",
    )

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False)
    action_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    action_label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Opaque producer payload",
    )
    template_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    template_variables: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending, queued, sent, failed, cancelled",
    )
    failure_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    max_retries: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=3,
        comment="Delivery attempts allowed per channel",
    )

    # Scheduling
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    schedule_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Scheduler handle for future deliveries",
    )

    # Idempotency and grouping
    deduplication_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Producer key identifying the logical event",
    )
    group_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("notifications.id", ondelete="SET NULL"),
        nullable=True,
        comment="Notification this one follows up on",
    )
    source: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Producer subsystem that created the notification",
    )
    batch_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Bulk creation batch identifier",
    )

    # Engagement timestamps
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    deliveries: Mapped[list[NotificationDelivery]] = relationship(
        "NotificationDelivery",
        back_populates="notification",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
        order_by="NotificationDelivery.channel",
    )

    __table_args__ = (
        Index("idx_notification_tenant_user", "tenant_id", "user_id"),
        Index("idx_notification_dedup_status", "deduplication_key", "status"),
        Index("idx_notification_status_scheduled", "status", "scheduled_for"),
        Index("idx_notification_status_created", "status", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("sent", "failed", "cancelled")

    def __repr__(self) -> str:
        return f"<Notification {self.id} {self.type} status={self.status}>"


class NotificationDelivery(UUIDv7TimestampedBase):
    """One channel-specific delivery attempt record.

    A delivery never changes channel. ``retry_count`` is owned here rather
    than by the queue so the backoff policy can be inspected and tested
    independently of broker redelivery.

    Indexes:
        - (notification_id, channel, recipient) unique
        - (status, next_retry_at) for the retry sweep
        - (channel, status, sent_at) for the daily cap
    """

    __tablename__ = "notification_deliveries"

    notification_id: Mapped[UUID] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning notification",
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False, comment="email, in_app")
    recipient: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Resolved address for the channel (email address or user id)",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending, queued, sent, failed, cancelled",
    )
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    external_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Provider message id",
    )
    channel_response: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cost: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=0,
        comment="Approximate cost in cents",
    )

    notification: Mapped[Notification] = relationship("Notification", back_populates="deliveries")

    __table_args__ = (
        UniqueConstraint(
            "notification_id",
            "channel",
            "recipient",
            name="uq_notification_deliveries_notification_channel_recipient",
        ),
        Index("idx_delivery_status_retry", "status", "next_retry_at"),
        Index("idx_delivery_channel_status_sent", "channel", "status", "sent_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("sent", "failed", "cancelled") and not (
            self.status == "failed" and self.next_retry_at is not None
        )

    def __repr__(self) -> str:
        return f"<NotificationDelivery {self.id} {self.channel} status={self.status}>"
