"""Application lifespan management.

Startup Order:
1. Core (logging) - always runs first
2. Database - conditional on configuration
3. Background tasks (Taskiq lane brokers, APScheduler sweeps)

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib import import_module
from typing import TYPE_CHECKING

from notify_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_rabbit_settings,
)
from notify_service.infra.logging.config import setup_logging

# Lazy imports to avoid circular dependencies:
# - notify_service.infra.database.session
# - notify_service.infra.tasks.broker
# - notify_service.infra.tasks.scheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import ModuleType

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_taskiq_module: ModuleType | None = None
_scheduler_module: ModuleType | None = None


async def _startup_core() -> None:
    """Configure logging."""
    app = get_app_settings()
    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info("Application starting", extra={"service": app.service_name, "version": app.version})


async def _startup_database() -> None:
    """Verify the database; SQLite fallbacks create their tables directly."""
    from notify_service.infra.database.session import init_database

    db = get_db_settings()
    if not db.enabled:
        logger.warning("Database disabled, notification endpoints will fail")
        return

    await init_database(create_tables=db.is_sqlite)
    logger.info("Database connection initialized", extra={"sqlite": db.is_sqlite})


async def _startup_tasks() -> None:
    """Start the lane brokers for publishing and the sweep scheduler."""
    global _taskiq_module, _scheduler_module

    _taskiq_module = import_module("notify_service.infra.tasks.broker")
    await _taskiq_module.start_taskiq()
    logger.info(
        "Taskiq lane brokers initialized (use 'taskiq worker' to run tasks)",
        extra={"rabbitmq": get_rabbit_settings().is_configured},
    )

    _scheduler_module = import_module("notify_service.infra.tasks.scheduler")
    _scheduler_module.setup_scheduled_jobs()
    await _scheduler_module.start_scheduler()


async def _shutdown_tasks() -> None:
    global _taskiq_module, _scheduler_module

    if _scheduler_module is not None:
        await _scheduler_module.stop_scheduler()
        _scheduler_module = None
    if _taskiq_module is not None:
        await _taskiq_module.stop_taskiq()
        _taskiq_module = None


async def _shutdown_database() -> None:
    from notify_service.infra.database.session import close_database

    await close_database()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    _ = app

    await _startup_core()
    await _startup_database()
    await _startup_tasks()

    yield

    logger.info("Application shutting down")
    await _shutdown_tasks()
    await _shutdown_database()
