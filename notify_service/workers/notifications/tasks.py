"""Notification task definitions.

This module provides:
- Processing of one notification (priority and scheduled lanes)
- Single-delivery retries (retry lane)
- The retry sweep, pending sweep and retention cleanup published by APScheduler

Every handler is registered on every lane broker under a stable task name,
so whichever lane a job was published to, its worker can run it. Each run
opens its own session and binds tenant and notification ids to the log
context.

Example:
    from notify_service.features.notifications.queue import get_notification_queue

    await get_notification_queue().enqueue_immediate(notification_id, tenant_id, priority="high")
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from notify_service.features.notifications.queue import (
    CLEANUP_TASK,
    PENDING_SWEEP_TASK,
    PROCESS_NOTIFICATION_TASK,
    RETRY_DELIVERY_TASK,
    RETRY_SWEEP_TASK,
)
from notify_service.features.notifications.service import get_notification_service
from notify_service.infra.database.session import get_async_session
from notify_service.infra.logging import clear_log_context, set_log_context
from notify_service.infra.tasks.broker import brokers

logger = logging.getLogger(__name__)


async def process_notification(payload: dict[str, Any]) -> dict[str, Any]:
    """Process one notification.

    Args:
        payload: ``{"notification_id": str, "tenant_id": str}``

    Returns:
        Counts of sent, failed, blocked and skipped deliveries.
    """
    notification_id = UUID(payload["notification_id"])
    set_log_context(notification_id=str(notification_id), tenant_id=payload.get("tenant_id"))
    try:
        async with get_async_session() as session:
            result = await get_notification_service().process_notification(session, notification_id)
    finally:
        clear_log_context()

    return {
        "notification_id": str(result.notification_id),
        "found": result.found,
        "status": result.status,
        "sent": result.sent,
        "failed": result.failed,
        "blocked": result.blocked,
        "skipped": result.skipped,
    }


async def retry_delivery(payload: dict[str, Any]) -> dict[str, Any]:
    """Re-attempt one failed delivery.

    Args:
        payload: ``{"delivery_id": str, "tenant_id": str}``
    """
    delivery_id = UUID(payload["delivery_id"])
    set_log_context(delivery_id=str(delivery_id), tenant_id=payload.get("tenant_id"))
    try:
        async with get_async_session() as session:
            result = await get_notification_service().retry_delivery(session, delivery_id)
    finally:
        clear_log_context()

    if result is None:
        return {"delivery_id": str(delivery_id), "found": False}
    return {
        "delivery_id": str(delivery_id),
        "found": True,
        "notification_status": result.status,
        "sent": result.sent,
        "failed": result.failed,
        "skipped": result.skipped,
    }


async def retry_sweep(payload: dict[str, Any]) -> dict[str, int]:
    """Publish due retries and reclaim abandoned deliveries.

    Scheduled: every ``NOTIFY_RETRY_SWEEP_INTERVAL_SECONDS`` (via APScheduler).
    """
    async with get_async_session() as session:
        return await get_notification_service().retry_failed_deliveries(session, limit=payload.get("limit"))


async def pending_sweep(payload: dict[str, Any]) -> dict[str, int]:
    """Re-enqueue notifications whose publish never reached a worker.

    Scheduled: every ``NOTIFY_PENDING_SWEEP_INTERVAL_SECONDS`` (via APScheduler).
    """
    async with get_async_session() as session:
        enqueued = await get_notification_service().enqueue_pending(session, limit=payload.get("limit"))
    return {"enqueued": enqueued}


async def cleanup_notifications(payload: dict[str, Any]) -> dict[str, int]:
    """Delete terminal notifications past retention.

    Scheduled: daily at ``NOTIFY_CLEANUP_HOUR_UTC`` (via APScheduler).
    """
    async with get_async_session() as session:
        deleted = await get_notification_service().cleanup(session, payload.get("retention_days"))
    logger.info("Notification cleanup task finished", extra={"deleted": deleted})
    return {"deleted": deleted}


TASKS = {
    PROCESS_NOTIFICATION_TASK: process_notification,
    RETRY_DELIVERY_TASK: retry_delivery,
    RETRY_SWEEP_TASK: retry_sweep,
    PENDING_SWEEP_TASK: pending_sweep,
    CLEANUP_TASK: cleanup_notifications,
}

for _broker in brokers.values():
    for _task_name, _func in TASKS.items():
        _broker.register_task(_func, task_name=_task_name)
