"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine and session with all tables
    - Notification Fixtures: fake queue provider, senders, directory, clock
      and a fully wired NotificationService
    - Application Fixtures: FastAPI app and HTTP client with overrides

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Keep fixtures composable (fixtures can depend on other fixtures)
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.utils import FakeQueueProvider, FakeSender, MutableClock

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

    from notify_service.features.notifications.service import NotificationService

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ROOT_PATH", "")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("LOG_JSON_LOGS", "false")
os.environ.setdefault("LOG_FILE_PATH", "")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine with in-memory SQLite.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create async database session with all notification tables.

    Yields:
        Async database session for testing.
    """
    from notify_service.core.database.base import Base
    from notify_service.features.notifications import models

    _ = models
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ============================================================================
# Notification Fixtures
# ============================================================================


@pytest.fixture
def clock() -> MutableClock:
    """Clock shared by the service and the queue."""
    return MutableClock()


@pytest.fixture
def queue_provider() -> FakeQueueProvider:
    return FakeQueueProvider()


@pytest.fixture
def email_sender() -> FakeSender:
    """Email sender that succeeds unless results are queued on it."""
    return FakeSender("email")


@pytest.fixture
def event_sink():
    from notify_service.features.notifications.events import RecordingEventSink

    return RecordingEventSink()


@pytest.fixture
def notification_settings():
    from notify_service.core.settings.notifications import NotificationSettings

    return NotificationSettings(default_channels=["in_app"], max_retries=3, retention_days=90)


@pytest.fixture
def directory():
    """Directory knowing one recipient with an account email."""
    from notify_service.features.notifications.recipients import (
        RecipientProfile,
        StaticRecipientDirectory,
    )

    return StaticRecipientDirectory(
        {"user-1": RecipientProfile(email="sam@example.com", name="Sam Rivera")},
    )


@pytest.fixture
def notification_service(
    queue_provider: FakeQueueProvider,
    email_sender: FakeSender,
    event_sink,
    notification_settings,
    directory,
    clock: MutableClock,
) -> NotificationService:
    """NotificationService wired to fakes; nothing leaves the process."""
    from notify_service.features.notifications.channels import InAppChannelSender
    from notify_service.features.notifications.queue import NotificationQueue
    from notify_service.features.notifications.service import NotificationService

    queue = NotificationQueue(queue_provider, settings=notification_settings, clock=clock)
    return NotificationService(
        queue=queue,
        senders={"in_app": InAppChannelSender(), "email": email_sender},
        directory=directory,
        event_sink=event_sink,
        settings=notification_settings,
        clock=clock,
    )


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(db_session: AsyncSession, notification_service: NotificationService) -> FastAPI:
    """FastAPI app whose session and service dependencies use the fixtures."""
    from notify_service.app.main import create_app
    from notify_service.features.notifications.dependencies import get_db_session, get_service

    application = create_app()

    async def override_get_db_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    application.dependency_overrides[get_db_session] = override_get_db_session
    application.dependency_overrides[get_service] = lambda: notification_service
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for the app; lifespan is not run."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
