"""Email provider factory.

Builds the configured provider once per process:
    provider = get_email_provider()
    result = await provider.send(message)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from notify_service.core.settings import get_email_settings
from notify_service.infra.email.providers.brevo import BrevoProvider
from notify_service.infra.email.providers.console import ConsoleProvider

if TYPE_CHECKING:
    from notify_service.core.settings.email import EmailSettings
    from notify_service.infra.email.providers.base import BaseEmailProvider

_provider: BaseEmailProvider | None = None


def create_email_provider(settings: EmailSettings) -> BaseEmailProvider:
    """Create a provider instance for the given settings.

    Disabled email or the console backend yields a ConsoleProvider, so local
    runs exercise the whole pipeline without sending anything.
    """
    if settings.enabled and settings.backend == "brevo" and settings.brevo_api_key is not None:
        return BrevoProvider(
            api_key=settings.brevo_api_key.get_secret_value(),
            from_email=str(settings.default_from_email),
            from_name=settings.default_from_name,
            reply_to=str(settings.default_reply_to) if settings.default_reply_to else None,
            base_url=settings.brevo_base_url,
            timeout=settings.timeout,
        )
    return ConsoleProvider(
        from_email=str(settings.default_from_email),
        from_name=settings.default_from_name,
    )


def get_email_provider() -> BaseEmailProvider:
    """Get or create the process-wide email provider."""
    global _provider
    if _provider is None:
        _provider = create_email_provider(get_email_settings())
    return _provider


def reset_email_provider() -> None:
    """Forget the cached provider (tests, settings reload)."""
    global _provider
    _provider = None
