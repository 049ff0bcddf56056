"""Email provider implementations."""

from notify_service.infra.email.providers.base import (
    BaseEmailProvider,
    EmailDeliveryResult,
    EmailProvider,
)
from notify_service.infra.email.providers.brevo import BrevoProvider
from notify_service.infra.email.providers.console import ConsoleProvider

__all__ = [
    "BaseEmailProvider",
    "BrevoProvider",
    "ConsoleProvider",
    "EmailDeliveryResult",
    "EmailProvider",
]
