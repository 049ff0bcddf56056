"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for dependency injection in route handlers.
Tests replace ``get_db_session`` and ``get_service`` through
``app.dependency_overrides``.

Example usage:
    from notify_service.features.notifications.dependencies import (
        NotificationServiceDep,
        SessionDep,
    )

    @router.get("/{notification_id}")
    async def get_notification(
        notification_id: UUID,
        tenant_id: str,
        session: SessionDep,
        service: NotificationServiceDep,
    ) -> NotificationDetailResponse:
        ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from notify_service.features.notifications.service import (
    NotificationService,
    get_notification_service,
)
from notify_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for a request-scoped database session.

    Yields:
        Database session that is closed after the request completes.
    """
    async with get_async_session() as session:
        yield session


def get_service() -> NotificationService:
    """Get the notification service instance."""
    return get_notification_service()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

NotificationServiceDep = Annotated[NotificationService, Depends(get_service)]


__all__ = [
    "NotificationServiceDep",
    "SessionDep",
    "get_db_session",
    "get_service",
]
