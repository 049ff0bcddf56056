"""Unit tests for email provider selection."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from notify_service.core.settings.email import EmailSettings
from notify_service.infra.email.factory import create_email_provider
from notify_service.infra.email.providers.brevo import BrevoProvider
from notify_service.infra.email.providers.console import ConsoleProvider
from notify_service.infra.email.schemas import EmailMessage, EmailRecipient


def test_disabled_email_uses_console() -> None:
    provider = create_email_provider(EmailSettings(enabled=False, backend="brevo"))

    assert isinstance(provider, ConsoleProvider)


def test_brevo_backend() -> None:
    settings = EmailSettings(enabled=True, backend="brevo", brevo_api_key="xkeysib-test")

    provider = create_email_provider(settings)

    assert isinstance(provider, BrevoProvider)
    assert provider.provider_name == "brevo"


def test_brevo_requires_key() -> None:
    with pytest.raises(ValidationError, match="EMAIL_BREVO_API_KEY"):
        EmailSettings(enabled=True, backend="brevo")


@pytest.mark.asyncio
async def test_console_provider_always_succeeds() -> None:
    provider = create_email_provider(EmailSettings())
    message = EmailMessage(to=[EmailRecipient(email="sam@example.com")], subject="Hi", body_text="Hello")

    result = await provider.send(message)

    assert result.success
    assert result.message_id.startswith("console-")
