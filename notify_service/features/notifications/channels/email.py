"""Email channel sender backed by an EmailProvider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notify_service.features.notifications.channels.base import DeliveryResult, SendContext
from notify_service.features.notifications.enums import NotificationChannel
from notify_service.features.notifications.rendering import EmailRenderer
from notify_service.infra.email.schemas import EmailMessage, EmailRecipient

if TYPE_CHECKING:
    from notify_service.features.notifications.models import Notification, NotificationDelivery
    from notify_service.infra.email.providers.base import EmailProvider

logger = logging.getLogger(__name__)

# Approximate provider cost per accepted message, in cents
EMAIL_COST = 1
DEFAULT_RECIPIENT_NAME = "User"


class EmailChannelSender:
    """Render a notification and hand it to the email provider.

    Headers ``X-Tenant-ID``, ``X-Notification-ID`` and ``X-Notification-Type``
    and tags ``[type, category]`` let provider webhooks and analytics be
    traced back to the notification.
    """

    channel = NotificationChannel.EMAIL.value

    def __init__(
        self,
        provider: EmailProvider,
        renderer: EmailRenderer | None = None,
        *,
        from_email: str | None = None,
        from_name: str | None = None,
    ) -> None:
        self._provider = provider
        self._renderer = renderer or EmailRenderer(sender_name=from_name or "Notifications")
        self._from_email = from_email
        self._from_name = from_name

    def build_message(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> EmailMessage:
        rendered = self._renderer.render(notification, context.template)
        return EmailMessage(
            to=[
                EmailRecipient(
                    email=delivery.recipient,
                    name=context.recipient_name or DEFAULT_RECIPIENT_NAME,
                ),
            ],
            subject=rendered.subject,
            body_html=rendered.html,
            body_text=rendered.text,
            from_email=self._from_email,
            from_name=self._from_name,
            headers={
                "X-Tenant-ID": notification.tenant_id,
                "X-Notification-ID": str(notification.id),
                "X-Notification-Type": notification.type,
            },
            tags=[notification.type, notification.category],
        )

    async def send(
        self,
        notification: Notification,
        delivery: NotificationDelivery,
        context: SendContext,
    ) -> DeliveryResult:
        try:
            message = self.build_message(notification, delivery, context)
        except ValueError as exc:
            # An address the schema rejects will never succeed
            logger.warning(
                "Invalid email delivery",
                extra={"delivery_id": str(delivery.id), "error": str(exc)},
            )
            return DeliveryResult.failed(str(exc), "validation", retryable=False)

        result = await self._provider.send(message)
        if result.success:
            return DeliveryResult(
                success=True,
                external_id=result.message_id,
                cost=EMAIL_COST,
                response={"provider": result.provider, **result.metadata},
            )
        return DeliveryResult(
            success=False,
            cost=0,
            error_message=result.error,
            error_category=(result.error_code or "provider_error").lower(),
            retryable=result.retryable,
            response={"provider": result.provider, **result.metadata},
        )
