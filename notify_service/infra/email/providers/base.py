"""Base email provider protocol and abstract class.

Usage:
    class MyProvider(BaseEmailProvider):
        provider_name = "mine"

        async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from notify_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)

# Error codes worth another attempt later
RETRYABLE_ERROR_CODES = frozenset({"TIMEOUT", "HTTP_ERROR", "RATE_LIMITED", "SERVER_ERROR", "UNEXPECTED_ERROR"})


@dataclass(frozen=True)
class EmailDeliveryResult:
    """Outcome of one provider send.

    Attributes:
        success: Whether the provider accepted the message
        message_id: Provider-assigned message id
        provider: Provider name (brevo, console)
        error: Error message if failed
        error_code: Error category for programmatic handling
        duration_ms: Time taken to send in milliseconds
        metadata: Provider-specific metadata (status code, raw response)
    """

    success: bool
    message_id: str | None
    provider: str
    error: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @property
    def retryable(self) -> bool:
        return not self.success and self.error_code in RETRYABLE_ERROR_CODES

    @classmethod
    def success_result(
        cls,
        message_id: str,
        provider: str,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=True,
            message_id=message_id,
            provider=provider,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_result(
        cls,
        provider: str,
        error: str,
        error_code: str | None = None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=False,
            message_id=None,
            provider=provider,
            error=error,
            error_code=error_code,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )


@runtime_checkable
class EmailProvider(Protocol):
    """Interface the email channel depends on."""

    @property
    def provider_name(self) -> str: ...

    async def send(self, message: EmailMessage) -> EmailDeliveryResult: ...

    async def health_check(self) -> bool: ...


class BaseEmailProvider(ABC):
    """Common timing, logging and error normalization for providers.

    Subclasses implement ``_do_send`` and ``_do_health_check``. Any exception
    escaping ``_do_send`` is converted into a failure result so callers only
    ever deal with EmailDeliveryResult values.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str: ...

    @abstractmethod
    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult: ...

    async def _do_health_check(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Send an email with timing, logging and error handling.

        Args:
            message: The email message to send

        Returns:
            EmailDeliveryResult with delivery status
        """
        start_time = time.perf_counter()
        try:
            result = await self._do_send(message)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception(
                f"Unexpected error in {self.provider_name} provider",
                extra={"provider": self.provider_name, "error": str(e), "duration_ms": duration_ms},
            )
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=str(e),
                error_code="UNEXPECTED_ERROR",
                duration_ms=duration_ms,
            )

        if result.duration_ms is None:
            result = replace(result, duration_ms=int((time.perf_counter() - start_time) * 1000))

        if result.success:
            logger.info(
                f"Email sent via {self.provider_name}",
                extra={
                    "message_id": result.message_id,
                    "provider": self.provider_name,
                    "recipients": len(message.to),
                    "duration_ms": result.duration_ms,
                },
            )
        else:
            logger.warning(
                f"Email send failed via {self.provider_name}",
                extra={
                    "provider": self.provider_name,
                    "error": result.error,
                    "error_code": result.error_code,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def health_check(self) -> bool:
        try:
            return await self._do_health_check()
        except Exception as e:
            logger.warning(
                f"{self.provider_name} health check failed",
                extra={"provider": self.provider_name, "error": str(e)},
            )
            return False
