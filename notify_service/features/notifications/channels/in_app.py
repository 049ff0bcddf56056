"""In-app channel: the stored notification row is the delivery."""

from __future__ import annotations

from typing import TYPE_CHECKING

from notify_service.features.notifications.channels.base import DeliveryResult, SendContext
from notify_service.features.notifications.enums import NotificationChannel

if TYPE_CHECKING:
    from notify_service.features.notifications.models import Notification, NotificationDelivery


class InAppChannelSender:
    """Always succeeds; clients read in-app notifications from the repository."""

    channel = NotificationChannel.IN_APP.value

    async def send(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        return DeliveryResult(
            success=True,
            external_id=str(notification.id),
            cost=0,
            response={"method": "database"},
        )
