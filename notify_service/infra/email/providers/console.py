"""Console email provider for development.

Logs emails instead of sending them. Always succeeds.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from .base import BaseEmailProvider, EmailDeliveryResult

if TYPE_CHECKING:
    from notify_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)


class ConsoleProvider(BaseEmailProvider):
    """Write each message to the log and report success."""

    def __init__(self, from_email: str, from_name: str | None = None) -> None:
        self._from_email = from_email
        self._from_name = from_name
        logger.info("Console email provider initialized (development mode)")

    @property
    def provider_name(self) -> str:
        return "console"

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "Email (console)",
            extra={
                "message_id": message_id,
                "from": str(message.from_email or self._from_email),
                "to": message.recipient_emails,
                "subject": message.subject,
                "headers": message.headers,
                "tags": message.tags,
                "body_text": (message.body_text or "")[:500],
            },
        )
        return EmailDeliveryResult.success_result(message_id=message_id, provider=self.provider_name)


__all__ = ["ConsoleProvider"]
