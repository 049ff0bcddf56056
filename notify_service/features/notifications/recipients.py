"""Recipient address resolution.

``in_app`` addresses are user ids. ``email`` prefers the per-tenant override
stored on the preference record and falls back to the account email from
the recipient directory. A channel with no address gets no delivery row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from notify_service.core.exceptions import ServiceUnavailableException
from notify_service.features.notifications.enums import NotificationChannel

if TYPE_CHECKING:
    from collections.abc import Mapping

    from notify_service.features.notifications.models import NotificationPreference

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecipientProfile:
    email: str | None = None
    name: str | None = None


@runtime_checkable
class RecipientDirectory(Protocol):
    """Lookup of account details owned by another service."""

    async def get_profile(self, tenant_id: str, user_id: str) -> RecipientProfile | None: ...


class StaticRecipientDirectory:
    """In-memory directory keyed by user id (development and tests).

    Example:
        directory = StaticRecipientDirectory({"user-1": RecipientProfile(email="a@example.com")})
    """

    def __init__(self, profiles: Mapping[str, RecipientProfile] | None = None) -> None:
        self._profiles = dict(profiles or {})

    async def get_profile(self, tenant_id: str, user_id: str) -> RecipientProfile | None:
        return self._profiles.get(user_id)


class HttpRecipientDirectory:
    """Fetch profiles from the account service.

    ``GET {base_url}/tenants/{tenant_id}/users/{user_id}`` returning
    ``{"email": ..., "name": ...}``. A 404 means no such user.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=self._timeout)
        async with httpx.AsyncClient() as client:
            return await client.get(url, timeout=self._timeout)

    async def get_profile(self, tenant_id: str, user_id: str) -> RecipientProfile | None:
        """Return the profile, or None when the directory has no such user.

        Raises:
            ServiceUnavailableException: If the directory cannot be reached or
                answers with a server error.
        """
        url = f"{self._base_url}/tenants/{tenant_id}/users/{user_id}"
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            logger.warning(
                "Recipient directory unreachable",
                extra={"tenant_id": tenant_id, "user_id": user_id, "error": str(exc)},
            )
            raise ServiceUnavailableException(
                detail="Recipient directory unavailable",
                type="recipient-directory-unavailable",
            ) from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            raise ServiceUnavailableException(
                detail=f"Recipient directory returned {response.status_code}",
                type="recipient-directory-unavailable",
            )
        if response.status_code != 200:
            logger.warning(
                "Unexpected recipient directory response",
                extra={"tenant_id": tenant_id, "user_id": user_id, "status_code": response.status_code},
            )
            return None

        body = response.json()
        return RecipientProfile(email=body.get("email") or None, name=body.get("name") or None)


async def resolve_recipient(
    channel: str,
    *,
    tenant_id: str,
    user_id: str,
    preferences: NotificationPreference | None,
    directory: RecipientDirectory,
) -> str | None:
    """Resolve the address for one channel, or None to skip the channel."""
    if channel == NotificationChannel.IN_APP:
        return user_id
    if channel == NotificationChannel.EMAIL:
        if preferences is not None and preferences.email_address:
            return preferences.email_address
        profile = await directory.get_profile(tenant_id, user_id)
        if profile is not None and profile.email:
            return profile.email
        return None
    return None
