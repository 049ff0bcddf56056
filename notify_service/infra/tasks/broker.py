"""Taskiq lane brokers for notification processing.

Every queue lane gets its own broker bound to its own RabbitMQ queue
(``notifications-critical``, ``notifications-high`` ... ``notifications-retry``).
The broker's ``qos`` (prefetch) equals the lane's configured parallelism, so
each lane's consumer concurrency is bounded independently.

With RabbitMQ disabled every lane uses an ``InMemoryBroker``, which runs
tasks in-process (local development and tests).

Workers run one process per lane:

    taskiq worker notify_service.infra.tasks.broker:critical_broker
    taskiq worker notify_service.infra.tasks.broker:retry_broker

Task modules are imported at the bottom of this file so that a worker
loading any lane broker sees every task registered.
"""

from __future__ import annotations

import logging

from taskiq import AsyncBroker, InMemoryBroker
from taskiq_aio_pika import AioPikaBroker

from notify_service.core.settings import get_notification_settings, get_rabbit_settings
from notify_service.features.notifications.enums import QueueLane
from notify_service.infra.logging.config import setup_logging

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()
notification_settings = get_notification_settings()
setup_logging()


def create_lane_broker(lane: str) -> AsyncBroker:
    """Build the broker for one lane from settings."""
    parallelism = notification_settings.lane_parallelism.get(lane, 1)
    if not rabbit_settings.is_configured:
        return InMemoryBroker(max_async_tasks=parallelism)

    queue_name = rabbit_settings.queue_name(lane)
    broker = AioPikaBroker(
        url=rabbit_settings.get_url(),
        exchange_name=rabbit_settings.exchange_name,
        queue_name=queue_name,
        routing_key=queue_name,
        qos=parallelism,
        declare_exchange=True,
        declare_queues=True,
    )
    logger.info(
        "Taskiq lane broker configured",
        extra={"lane": lane, "queue": queue_name, "qos": parallelism},
    )
    return broker


brokers: dict[str, AsyncBroker] = {lane.value: create_lane_broker(lane.value) for lane in QueueLane}

critical_broker = brokers[QueueLane.CRITICAL]
high_broker = brokers[QueueLane.HIGH]
normal_broker = brokers[QueueLane.NORMAL]
low_broker = brokers[QueueLane.LOW]
scheduled_broker = brokers[QueueLane.SCHEDULED]
retry_broker = brokers[QueueLane.RETRY]

if not rabbit_settings.is_configured:
    logger.warning("RabbitMQ not configured - lanes use in-memory brokers")


async def start_taskiq() -> None:
    """Start every lane broker for publishing.

    Call during application startup. Consuming happens in separate
    ``taskiq worker`` processes.

    Raises:
        ConnectionError: If RabbitMQ cannot be reached.
    """
    logger.info("Starting Taskiq lane brokers", extra={"lanes": list(brokers)})
    for lane, broker in brokers.items():
        try:
            await broker.startup()
        except Exception as e:
            logger.exception("Failed to start Taskiq broker", extra={"lane": lane, "error": str(e)})
            raise
    logger.info("Taskiq lane brokers started")


async def stop_taskiq() -> None:
    """Stop every lane broker, continuing past individual failures."""
    logger.info("Stopping Taskiq lane brokers")
    for lane, broker in brokers.items():
        try:
            await broker.shutdown()
        except Exception as e:
            logger.exception("Error stopping Taskiq broker", extra={"lane": lane, "error": str(e)})


# =============================================================================
# Task Module Imports
# =============================================================================
# Registers notification tasks on every lane broker.

import notify_service.workers.notifications.tasks  # noqa: E402
