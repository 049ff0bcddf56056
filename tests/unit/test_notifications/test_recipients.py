"""Unit tests for recipient address resolution."""

from __future__ import annotations

import httpx
import pytest

from notify_service.core.exceptions import ServiceUnavailableException
from notify_service.features.notifications.models import NotificationPreference
from notify_service.features.notifications.recipients import (
    HttpRecipientDirectory,
    RecipientDirectory,
    RecipientProfile,
    StaticRecipientDirectory,
    resolve_recipient,
)


def _directory_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestResolveRecipient:
    """Test per-channel address resolution."""

    @pytest.mark.asyncio
    async def test_in_app_uses_user_id(self) -> None:
        recipient = await resolve_recipient(
            "in_app",
            tenant_id="gym-1",
            user_id="user-1",
            preferences=None,
            directory=StaticRecipientDirectory(),
        )
        assert recipient == "user-1"

    @pytest.mark.asyncio
    async def test_email_prefers_tenant_override(self) -> None:
        prefs = NotificationPreference(tenant_id="gym-1", user_id="user-1", email_address="front-desk@gym.example.com")
        directory = StaticRecipientDirectory({"user-1": RecipientProfile(email="sam@example.com")})

        recipient = await resolve_recipient(
            "email",
            tenant_id="gym-1",
            user_id="user-1",
            preferences=prefs,
            directory=directory,
        )

        assert recipient == "front-desk@gym.example.com"

    @pytest.mark.asyncio
    async def test_email_falls_back_to_account_email(self) -> None:
        directory = StaticRecipientDirectory({"user-1": RecipientProfile(email="sam@example.com")})

        recipient = await resolve_recipient(
            "email",
            tenant_id="gym-1",
            user_id="user-1",
            preferences=None,
            directory=directory,
        )

        assert recipient == "sam@example.com"

    @pytest.mark.asyncio
    async def test_email_without_address_is_skipped(self) -> None:
        directory = StaticRecipientDirectory({"user-1": RecipientProfile(name="Sam")})

        recipient = await resolve_recipient(
            "email",
            tenant_id="gym-1",
            user_id="user-1",
            preferences=None,
            directory=directory,
        )

        assert recipient is None


class TestHttpRecipientDirectory:
    """Test the account-service backed directory."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(HttpRecipientDirectory("http://accounts"), RecipientDirectory)

    @pytest.mark.asyncio
    async def test_returns_profile(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"email": "sam@example.com", "name": "Sam Rivera"})

        async with _directory_client(handler) as client:
            directory = HttpRecipientDirectory("http://accounts/api/", client=client)
            profile = await directory.get_profile("gym-1", "user-1")

        assert profile == RecipientProfile(email="sam@example.com", name="Sam Rivera")
        assert seen == ["/api/tenants/gym-1/users/user-1"]

    @pytest.mark.asyncio
    async def test_not_found_is_none(self) -> None:
        async with _directory_client(lambda request: httpx.Response(404)) as client:
            profile = await HttpRecipientDirectory("http://accounts", client=client).get_profile("gym-1", "ghost")

        assert profile is None

    @pytest.mark.asyncio
    async def test_server_error_raises_unavailable(self) -> None:
        async with _directory_client(lambda request: httpx.Response(503)) as client:
            directory = HttpRecipientDirectory("http://accounts", client=client)
            with pytest.raises(ServiceUnavailableException):
                await directory.get_profile("gym-1", "user-1")

    @pytest.mark.asyncio
    async def test_transport_error_raises_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _directory_client(handler) as client:
            directory = HttpRecipientDirectory("http://accounts", client=client)
            with pytest.raises(ServiceUnavailableException) as exc_info:
                await directory.get_profile("gym-1", "user-1")

        assert exc_info.value.status_code == 503
