"""notification tables

Revision ID: 6b1d2c4e8f10
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from notify_service.core.database.types import StringArray, UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "6b1d2c4e8f10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            UTCDateTime(),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of record creation",
        ),
        sa.Column(
            "updated_at",
            UTCDateTime(),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of last update",
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "notification_templates",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("template_id", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("variables", StringArray(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_templates")),
        sa.UniqueConstraint("template_id", name=op.f("uq_notification_templates_template_id")),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("enable_in_app", sa.Boolean(), nullable=False),
        sa.Column("enable_email", sa.Boolean(), nullable=False),
        sa.Column("enable_billing", sa.Boolean(), nullable=False),
        sa.Column("enable_retention", sa.Boolean(), nullable=False),
        sa.Column("enable_engagement", sa.Boolean(), nullable=False),
        sa.Column("enable_workflow", sa.Boolean(), nullable=False),
        sa.Column("enable_social", sa.Boolean(), nullable=False),
        sa.Column("enable_system", sa.Boolean(), nullable=False),
        sa.Column("quiet_hours_start", sa.Integer(), nullable=True),
        sa.Column("quiet_hours_end", sa.Integer(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("max_daily_notifications", sa.Integer(), nullable=True),
        sa.Column("digest_frequency", sa.String(length=20), nullable=False),
        sa.Column("email_address", sa.String(length=320), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "quiet_hours_start IS NULL OR (quiet_hours_start >= 0 AND quiet_hours_start <= 23)",
            name=op.f("ck_notification_preferences_quiet_hours_start_range"),
        ),
        sa.CheckConstraint(
            "quiet_hours_end IS NULL OR (quiet_hours_end >= 0 AND quiet_hours_end <= 23)",
            name=op.f("ck_notification_preferences_quiet_hours_end_range"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_preferences")),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_notification_preferences_tenant_user"),
    )
    op.create_index(
        op.f("ix_notification_preferences_tenant_id"),
        "notification_preferences",
        ["tenant_id"],
    )
    op.create_index(
        op.f("ix_notification_preferences_user_id"),
        "notification_preferences",
        ["user_id"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("membership_id", sa.String(length=255), nullable=True),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("action_url", sa.String(length=2048), nullable=True),
        sa.Column("action_label", sa.String(length=100), nullable=True),
        sa.Column("data", JSONType, nullable=True),
        sa.Column("template_id", sa.String(length=100), nullable=True),
        sa.Column("template_variables", JSONType, nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("scheduled_for", UTCDateTime(), nullable=True),
        sa.Column("expires_at", UTCDateTime(), nullable=True),
        sa.Column("schedule_id", sa.String(length=255), nullable=True),
        sa.Column("deduplication_key", sa.String(length=255), nullable=True),
        sa.Column("group_key", sa.String(length=255), nullable=True),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("batch_id", sa.String(length=64), nullable=True),
        sa.Column("sent_at", UTCDateTime(), nullable=True),
        sa.Column("delivered_at", UTCDateTime(), nullable=True),
        sa.Column("read_at", UTCDateTime(), nullable=True),
        sa.Column("clicked_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["parent_id"],
            ["notifications.id"],
            name=op.f("fk_notifications_parent_id_notifications"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(op.f("ix_notifications_tenant_id"), "notifications", ["tenant_id"])
    op.create_index(op.f("ix_notifications_status"), "notifications", ["status"])
    op.create_index("idx_notification_tenant_user", "notifications", ["tenant_id", "user_id"])
    op.create_index("idx_notification_dedup_status", "notifications", ["deduplication_key", "status"])
    op.create_index("idx_notification_status_scheduled", "notifications", ["status", "scheduled_for"])
    op.create_index("idx_notification_status_created", "notifications", ["status", "created_at"])

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("notification_id", sa.Uuid(), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("recipient", sa.String(length=320), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("sent_at", UTCDateTime(), nullable=True),
        sa.Column("delivered_at", UTCDateTime(), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("channel_response", JSONType, nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("next_retry_at", UTCDateTime(), nullable=True),
        sa.Column("cost", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["notification_id"],
            ["notifications.id"],
            name=op.f("fk_notification_deliveries_notification_id_notifications"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_deliveries")),
        sa.UniqueConstraint(
            "notification_id",
            "channel",
            "recipient",
            name="uq_notification_deliveries_notification_channel_recipient",
        ),
    )
    op.create_index(
        op.f("ix_notification_deliveries_notification_id"),
        "notification_deliveries",
        ["notification_id"],
    )
    op.create_index("idx_delivery_status_retry", "notification_deliveries", ["status", "next_retry_at"])
    op.create_index(
        "idx_delivery_channel_status_sent",
        "notification_deliveries",
        ["channel", "status", "sent_at"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("notification_deliveries")
    op.drop_table("notifications")
    op.drop_table("notification_preferences")
    op.drop_table("notification_templates")
