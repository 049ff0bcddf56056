"""API router for the notifications feature.

Producer Endpoints:
- POST /notifications - Create a notification (idempotent on deduplication key)
- POST /notifications/bulk - Create many notifications under one batch id
- GET /notifications/{notification_id} - Get a notification with its deliveries
- POST /notifications/{notification_id}/cancel - Cancel an unfinished notification

Operator Endpoints:
- POST /notifications/{notification_id}/process - Process synchronously
- GET /notifications/stats - Counts over a rolling window

Preference Endpoints:
- GET /notifications/preferences/{tenant_id}/{user_id} - Get preferences
- PUT /notifications/preferences/{tenant_id}/{user_id} - Create or update preferences
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from notify_service.core.exceptions import NotFoundException
from notify_service.features.notifications.dependencies import (
    NotificationServiceDep,
    SessionDep,
)
from notify_service.features.notifications.schemas import (
    BulkCreateResponse,
    BulkNotificationCreate,
    CancelRequest,
    CreateResponse,
    NotificationCreate,
    NotificationDetailResponse,
    NotificationResponse,
    NotificationStats,
    PreferenceResponse,
    PreferenceUpdate,
    ProcessResponse,
    StatsTimeframe,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)


# ============================================================================
# Producer Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification",
    description="""
Create a notification for one recipient and enqueue it for delivery.

**Deduplication:** when `deduplication_key` matches a queued or sent
notification in the same tenant, that notification is returned unchanged
with `deduplicated: true` and status `200`.

**Channels:** defaults to the configured channels; channels without a
resolvable recipient address get no delivery.
""",
    responses={422: {"description": "Invalid request or unsupported channel"}},
)
async def create_notification(
    payload: NotificationCreate,
    response: Response,
    session: SessionDep,
    service: NotificationServiceDep,
) -> CreateResponse:
    """Create and enqueue a notification."""
    result = await service.create_notification(session, payload)
    if result.deduplicated:
        response.status_code = status.HTTP_200_OK
    return CreateResponse.from_result(result)


@router.post(
    "/bulk",
    response_model=BulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create notifications in bulk",
    description="Create up to 1000 notifications sharing one generated `batch_id`.",
)
async def create_notifications_bulk(
    payload: BulkNotificationCreate,
    session: SessionDep,
    service: NotificationServiceDep,
) -> BulkCreateResponse:
    """Create many notifications at once."""
    batch = await service.create_bulk(session, payload.notifications)
    return BulkCreateResponse(
        batch_id=batch.batch_id,
        created=batch.created,
        deduplicated=batch.deduplicated,
        results=[CreateResponse.from_result(result) for result in batch.results],
    )


# ============================================================================
# Operator Endpoints
# ============================================================================


@router.get(
    "/stats",
    response_model=NotificationStats,
    summary="Notification statistics",
    description="Counts by status, category and channel over the last 24h, 7d or 30d.",
)
async def get_notification_stats(
    session: SessionDep,
    service: NotificationServiceDep,
    tenant_id: Annotated[str | None, Query(description="Restrict to one tenant")] = None,
    timeframe: Annotated[StatsTimeframe, Query(description="Rolling window")] = "24h",
) -> NotificationStats:
    """Get notification statistics."""
    return await service.get_stats(session, tenant_id=tenant_id, timeframe=timeframe)


# ============================================================================
# Preference Endpoints
# ============================================================================


@router.get(
    "/preferences/{tenant_id}/{user_id}",
    response_model=PreferenceResponse,
    summary="Get recipient preferences",
    responses={404: {"description": "No preferences stored for this recipient"}},
)
async def get_preferences(
    tenant_id: str,
    user_id: str,
    session: SessionDep,
    service: NotificationServiceDep,
) -> PreferenceResponse:
    """Get a recipient's notification preferences."""
    preference = await service.get_preferences(session, tenant_id, user_id)
    if preference is None:
        raise NotFoundException(
            detail=f"No preferences for user {user_id} in tenant {tenant_id}",
            type="preferences-not-found",
        )
    return PreferenceResponse.model_validate(preference)


@router.put(
    "/preferences/{tenant_id}/{user_id}",
    response_model=PreferenceResponse,
    summary="Create or update recipient preferences",
    description="""
Partially update a recipient's preferences, creating the row with defaults
on first write. Quiet hours are set as a pair and evaluated in `timezone`.
""",
)
async def update_preferences(
    tenant_id: str,
    user_id: str,
    payload: PreferenceUpdate,
    session: SessionDep,
    service: NotificationServiceDep,
) -> PreferenceResponse:
    """Create or update a recipient's notification preferences."""
    preference = await service.upsert_preferences(session, tenant_id, user_id, payload)
    return PreferenceResponse.model_validate(preference)


# ============================================================================
# Single Notification Endpoints
# ============================================================================


@router.get(
    "/{notification_id}",
    response_model=NotificationDetailResponse,
    summary="Get a notification with deliveries",
    responses={404: {"description": "Notification not found"}},
)
async def get_notification(
    notification_id: UUID,
    tenant_id: Annotated[str, Query(min_length=1, description="Owning tenant")],
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationDetailResponse:
    """Get a single notification with delivery details."""
    notification = await service.get_notification(session, tenant_id, notification_id)
    return NotificationDetailResponse.model_validate(notification)


@router.post(
    "/{notification_id}/cancel",
    response_model=NotificationResponse,
    summary="Cancel a notification",
    description="""
Cancel a notification that has not finished. Unfinished deliveries are
cancelled and a pending schedule is revoked.
""",
    responses={
        404: {"description": "Notification not found"},
        409: {"description": "Notification already finished"},
    },
)
async def cancel_notification(
    notification_id: UUID,
    payload: CancelRequest,
    session: SessionDep,
    service: NotificationServiceDep,
) -> NotificationResponse:
    """Cancel a notification."""
    notification = await service.cancel_notification(
        session,
        payload.tenant_id,
        notification_id,
        payload.reason,
    )
    logger.info(
        "Notification cancelled via API",
        extra={"notification_id": str(notification_id), "tenant_id": payload.tenant_id},
    )
    return NotificationResponse.model_validate(notification)


@router.post(
    "/{notification_id}/process",
    response_model=ProcessResponse,
    summary="Process a notification now",
    description="Run delivery for a notification synchronously instead of waiting for a worker.",
    responses={404: {"description": "Notification not found"}},
)
async def process_notification(
    notification_id: UUID,
    tenant_id: Annotated[str, Query(min_length=1, description="Owning tenant")],
    session: SessionDep,
    service: NotificationServiceDep,
) -> ProcessResponse:
    """Process a notification synchronously."""
    await service.get_notification(session, tenant_id, notification_id)
    result = await service.process_notification(session, notification_id)
    return ProcessResponse(
        notification_id=result.notification_id,
        status=result.status,
        sent=result.sent,
        failed=result.failed,
        blocked=result.blocked,
        skipped=result.skipped,
    )
