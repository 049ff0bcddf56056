"""Prometheus metrics for the notification delivery engine.

Usage:
    from notify_service.features.notifications.metrics import notification_created_total

    notification_created_total.labels(category="billing", priority="high").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Notification Lifecycle Metrics
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Total number of notifications created",
    labelnames=["category", "priority"],
)

notification_deduplicated_total = Counter(
    "notification_deduplicated_total",
    "Create calls answered with an existing notification",
    labelnames=["category"],
)

notification_enqueued_total = Counter(
    "notification_enqueued_total",
    "Notifications handed to the queue, by lane",
    labelnames=["lane"],
)

notification_enqueue_errors_total = Counter(
    "notification_enqueue_errors_total",
    "Queue publish failures during creation",
)

notification_completed_total = Counter(
    "notification_completed_total",
    "Notifications reaching a terminal status",
    labelnames=["status"],
)

# =============================================================================
# Delivery Metrics
# =============================================================================

notification_delivery_total = Counter(
    "notification_delivery_total",
    "Delivery attempts by channel and outcome",
    labelnames=["channel", "outcome"],
)

notification_delivery_blocked_total = Counter(
    "notification_delivery_blocked_total",
    "Deliveries cancelled by recipient preferences",
    labelnames=["channel", "reason"],
)

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Time spent in channel senders",
    labelnames=["channel"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

notification_retry_scheduled_total = Counter(
    "notification_retry_scheduled_total",
    "Failed deliveries scheduled for another attempt",
    labelnames=["channel"],
)

# =============================================================================
# Maintenance Metrics
# =============================================================================

notification_cleanup_deleted_total = Counter(
    "notification_cleanup_deleted_total",
    "Notifications removed by retention cleanup",
)
