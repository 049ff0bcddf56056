"""Base protocol and types for channel senders."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from notify_service.features.notifications.models import (
        Notification,
        NotificationDelivery,
        NotificationTemplate,
    )


@dataclass
class DeliveryResult:
    """Result of a channel delivery attempt.

    Attributes:
        success: Whether delivery succeeded
        external_id: Provider message id (or notification id for in-app)
        cost: Approximate cost in cents
        error_message: Error description if failed
        error_category: Error classification (timeout, auth, rate_limited, ...)
        retryable: Whether another attempt may succeed
        response: Channel-specific response metadata stored on the delivery
    """

    success: bool
    external_id: str | None = None
    cost: int = 0
    error_message: str | None = None
    error_category: str | None = None
    retryable: bool = True
    response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(
        cls,
        error_message: str,
        error_category: str | None = None,
        *,
        retryable: bool = True,
    ) -> DeliveryResult:
        return cls(
            success=False,
            error_message=error_message,
            error_category=error_category,
            retryable=retryable,
        )


@dataclass(frozen=True, slots=True)
class SendContext:
    """Data a sender needs that is loaded before sends start.

    Sends for one notification run concurrently, so anything that needs the
    database session is resolved up front and handed over here.
    """

    template: NotificationTemplate | None = None
    recipient_name: str | None = None


class ChannelSender(Protocol):
    """Protocol for channel-specific senders."""

    channel: str

    async def send(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        """Send one delivery.

        Implementations report failures through DeliveryResult instead of
        raising, so one channel never aborts another.
        """
        ...
