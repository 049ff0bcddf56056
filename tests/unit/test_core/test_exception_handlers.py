"""Unit tests for RFC 7807 exception handlers."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from pydantic import BaseModel

from notify_service.app.exception_handlers import configure_exception_handlers
from notify_service.core.exceptions import ConflictException, NotFoundException


class Payload(BaseModel):
    count: int


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    configure_exception_handlers(app)

    @app.get("/missing")
    async def missing() -> None:
        raise NotFoundException("Notification n-1 not found", type="notification-not-found")

    @app.get("/conflict")
    async def conflict() -> None:
        raise ConflictException("Notification already sent", extra={"current_status": "sent"})

    @app.post("/validate")
    async def validate(payload: Payload) -> dict:
        return {"count": payload.count}

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("kaboom")

    return app


@pytest.fixture
async def client(app: FastAPI):
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_not_found_problem(client: httpx.AsyncClient) -> None:
    response = await client.get("/missing")

    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "notification-not-found"
    assert body["title"] == "Not Found"
    assert body["detail"] == "Notification n-1 not found"
    assert body["instance"].endswith("/missing")


@pytest.mark.asyncio
async def test_conflict_includes_extra(client: httpx.AsyncClient) -> None:
    response = await client.get("/conflict")

    assert response.status_code == 409
    body = response.json()
    assert body["status"] == 409
    assert body["current_status"] == "sent"


@pytest.mark.asyncio
async def test_request_validation_lists_fields(client: httpx.AsyncClient) -> None:
    response = await client.post("/validate", json={"count": "many"})

    assert response.status_code == 422
    body = response.json()
    assert body["type"] == "validation-error"
    assert body["errors"][0]["field"] == "body.count"


@pytest.mark.asyncio
async def test_unexpected_error_is_generic(client: httpx.AsyncClient) -> None:
    response = await client.get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["type"] == "internal-error"
    assert "kaboom" not in body["detail"]
