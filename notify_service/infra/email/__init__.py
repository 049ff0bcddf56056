"""Transactional email delivery: message schema, providers and provider factory."""

from notify_service.infra.email.factory import get_email_provider, reset_email_provider
from notify_service.infra.email.providers.base import (
    BaseEmailProvider,
    EmailDeliveryResult,
    EmailProvider,
)
from notify_service.infra.email.schemas import EmailMessage, EmailRecipient

__all__ = [
    "BaseEmailProvider",
    "EmailDeliveryResult",
    "EmailMessage",
    "EmailProvider",
    "EmailRecipient",
    "get_email_provider",
    "reset_email_provider",
]
