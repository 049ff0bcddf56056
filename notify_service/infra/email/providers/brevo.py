"""Brevo (formerly Sendinblue) transactional email provider.

Uses the v3 REST API over httpx:
    POST {base_url}/smtp/email   header ``api-key``   -> 201 {"messageId": "..."}

Usage:
    provider = BrevoProvider(api_key="xkeysib-...", from_email="no-reply@mail.example.com")
    result = await provider.send(message)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from .base import BaseEmailProvider, EmailDeliveryResult

if TYPE_CHECKING:
    from notify_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)


class BrevoProvider(BaseEmailProvider):
    """Brevo transactional email API provider.

    Supports sender/reply-to, custom headers and tags. A shared
    ``httpx.AsyncClient`` may be injected; otherwise a short-lived client is
    opened per send.
    """

    API_BASE_URL = "https://api.brevo.com/v3"
    SEND_ENDPOINT = "/smtp/email"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str | None = None,
        *,
        reply_to: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Brevo provider.

        Args:
            api_key: Brevo API key
            from_email: Default sender address
            from_name: Default sender display name
            reply_to: Default reply-to address
            base_url: API base URL override
            timeout: Request timeout in seconds
            client: Optional shared HTTP client

        Raises:
            ValueError: If API key is missing
        """
        if not api_key:
            msg = "Brevo provider requires api_key"
            raise ValueError(msg)

        self._api_key = api_key
        self._from_email = from_email
        self._from_name = from_name
        self._reply_to = reply_to
        self._base_url = (base_url or self.API_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._client = client

        logger.info("Brevo provider initialized", extra={"base_url": self._base_url})

    @property
    def provider_name(self) -> str:
        return "brevo"

    def _build_payload(self, message: EmailMessage) -> dict[str, Any]:
        """Build the Brevo API payload."""
        sender: dict[str, str] = {"email": str(message.from_email or self._from_email)}
        sender_name = message.from_name or self._from_name
        if sender_name:
            sender["name"] = sender_name

        payload: dict[str, Any] = {
            "sender": sender,
            "to": [
                {"email": str(r.email), **({"name": r.name} if r.name else {})}
                for r in message.to
            ],
            "subject": message.subject,
        }
        if message.body_html:
            payload["htmlContent"] = message.body_html
        if message.body_text:
            payload["textContent"] = message.body_text

        if message.reply_to is not None:
            reply_to: dict[str, str] = {"email": str(message.reply_to.email)}
            if message.reply_to.name:
                reply_to["name"] = message.reply_to.name
            payload["replyTo"] = reply_to
        elif self._reply_to:
            payload["replyTo"] = {"email": self._reply_to}

        if message.headers:
            payload["headers"] = dict(message.headers)
        if message.tags:
            payload["tags"] = [tag for tag in message.tags if tag]
        return payload

    def _headers(self) -> dict[str, str]:
        return {
            "api-key": self._api_key,
            "accept": "application/json",
            "content-type": "application/json",
        }

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self._base_url}{self.SEND_ENDPOINT}"
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=self._headers(), timeout=self._timeout)
        async with httpx.AsyncClient() as client:
            return await client.post(url, json=payload, headers=self._headers(), timeout=self._timeout)

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Send email via the Brevo API."""
        payload = self._build_payload(message)

        try:
            response = await self._post(payload)
        except httpx.TimeoutException:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error="Brevo API timeout",
                error_code="TIMEOUT",
            )
        except httpx.HTTPError as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"Brevo HTTP error: {e}",
                error_code="HTTP_ERROR",
            )

        if response.status_code in (200, 201, 202):
            body = _json_or_empty(response)
            message_id = body.get("messageId") or f"brevo-{response.headers.get('x-request-id', 'unknown')}"
            return EmailDeliveryResult.success_result(
                message_id=message_id,
                provider=self.provider_name,
                metadata={"status_code": response.status_code, "response": body},
            )

        body = _json_or_empty(response)
        error_body = body.get("message") or response.text
        return EmailDeliveryResult.failure_result(
            provider=self.provider_name,
            error=f"Brevo API error ({response.status_code}): {error_body}",
            error_code=self._classify_http_error(response.status_code),
            metadata={"status_code": response.status_code, "code": body.get("code")},
        )

    def _classify_http_error(self, status_code: int) -> str:
        if status_code == 401:
            return "AUTH_FAILED"
        if status_code == 403:
            return "FORBIDDEN"
        if status_code == 429:
            return "RATE_LIMITED"
        if status_code == 400:
            return "BAD_REQUEST"
        if status_code >= 500:
            return "SERVER_ERROR"
        return "API_ERROR"

    async def _do_health_check(self) -> bool:
        """Check API key validity via the account endpoint."""
        url = f"{self._base_url}/account"
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=self._headers(), timeout=10.0)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=self._headers(), timeout=10.0)
        except httpx.HTTPError as e:
            logger.debug(f"Brevo health check failed: {e}")
            return False
        return response.status_code == 200


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


__all__ = ["BrevoProvider"]
