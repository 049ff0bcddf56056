"""Unit tests for channel senders."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from notify_service.features.notifications.channels import (
    EmailChannelSender,
    InAppChannelSender,
    SendContext,
)
from notify_service.features.notifications.models import Notification, NotificationDelivery
from notify_service.infra.email.providers.base import BaseEmailProvider, EmailDeliveryResult, EmailProvider


class RecordingProvider(BaseEmailProvider):
    """Provider that records messages and returns a canned result."""

    def __init__(self, result: EmailDeliveryResult | None = None) -> None:
        self.messages = []
        self._result = result

    @property
    def provider_name(self) -> str:
        return "recording"

    async def _do_send(self, message):
        self.messages.append(message)
        return self._result or EmailDeliveryResult.success_result(message_id="brevo-42", provider=self.provider_name)


@pytest.fixture
def notification() -> Notification:
    return Notification(
        id=uuid.uuid4(),
        tenant_id="gym-1",
        user_id="user-1",
        type="billing_limit_warning",
        category="billing",
        priority="high",
        title="Plan limit reached",
        message="You used 100% of your check-ins.",
    )


@pytest.fixture
def email_delivery(notification: Notification) -> NotificationDelivery:
    return NotificationDelivery(
        id=uuid.uuid4(),
        notification_id=notification.id,
        channel="email",
        recipient="sam@example.com",
        status="queued",
        retry_count=0,
    )


@pytest.mark.asyncio
async def test_in_app_always_succeeds(notification: Notification) -> None:
    delivery = NotificationDelivery(channel="in_app", recipient="user-1", status="queued", retry_count=0)

    result = await InAppChannelSender().send(notification, delivery, SendContext())

    assert result.success
    assert result.external_id == str(notification.id)
    assert result.cost == 0


class TestEmailChannelSender:
    """Test message construction and result mapping."""

    @pytest.mark.asyncio
    async def test_success_maps_message_id_and_cost(
        self,
        notification: Notification,
        email_delivery: NotificationDelivery,
    ) -> None:
        provider = RecordingProvider()
        sender = EmailChannelSender(provider, from_email="no-reply@gym.example.com", from_name="Iron Gym")

        result = await sender.send(notification, email_delivery, SendContext(recipient_name="Sam Rivera"))

        assert result.success
        assert result.external_id == "brevo-42"
        assert result.cost == 1

        message = provider.messages[0]
        assert message.recipient_emails == ["sam@example.com"]
        assert message.to[0].name == "Sam Rivera"
        assert message.subject == "Plan limit reached"
        assert message.headers == {
            "X-Tenant-ID": "gym-1",
            "X-Notification-ID": str(notification.id),
            "X-Notification-Type": "billing_limit_warning",
        }
        assert message.tags == ["billing_limit_warning", "billing"]

    @pytest.mark.asyncio
    async def test_missing_display_name_uses_default(
        self,
        notification: Notification,
        email_delivery: NotificationDelivery,
    ) -> None:
        provider = RecordingProvider()

        await EmailChannelSender(provider).send(notification, email_delivery, SendContext())

        assert provider.messages[0].to[0].name == "User"

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(
        self,
        notification: Notification,
        email_delivery: NotificationDelivery,
    ) -> None:
        provider = RecordingProvider(
            EmailDeliveryResult.failure_result(provider="recording", error="slow down", error_code="RATE_LIMITED"),
        )

        result = await EmailChannelSender(provider).send(notification, email_delivery, SendContext())

        assert not result.success
        assert result.retryable
        assert result.error_category == "rate_limited"
        assert result.cost == 0

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retryable(
        self,
        notification: Notification,
        email_delivery: NotificationDelivery,
    ) -> None:
        provider = RecordingProvider(
            EmailDeliveryResult.failure_result(provider="recording", error="bad key", error_code="AUTH_FAILED"),
        )

        result = await EmailChannelSender(provider).send(notification, email_delivery, SendContext())

        assert not result.retryable
        assert result.error_message == "bad key"

    @pytest.mark.asyncio
    async def test_works_with_any_email_provider(
        self,
        notification: Notification,
        email_delivery: NotificationDelivery,
    ) -> None:
        provider = AsyncMock(spec=EmailProvider)
        provider.send.return_value = EmailDeliveryResult.failure_result(
            provider="mock",
            error="Brevo API error (502)",
            error_code="SERVER_ERROR",
        )

        result = await EmailChannelSender(provider).send(notification, email_delivery, SendContext())

        provider.send.assert_awaited_once()
        assert result.retryable
        assert result.error_category == "server_error"

    @pytest.mark.asyncio
    async def test_invalid_address_fails_without_calling_provider(self, notification: Notification) -> None:
        provider = RecordingProvider()
        delivery = NotificationDelivery(channel="email", recipient="not-an-email", status="queued", retry_count=0)

        result = await EmailChannelSender(provider).send(notification, delivery, SendContext())

        assert not result.success
        assert not result.retryable
        assert result.error_category == "validation"
        assert provider.messages == []
