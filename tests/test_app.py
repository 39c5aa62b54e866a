"""Application-level endpoints and error envelope."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_root_lists_health_endpoint(client: AsyncClient):
    body = (await client.get("/")).json()

    assert body["name"] == "CRM API"
    assert body["health"] == "/health"


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get("/api/v2/segments/", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "AUTH_001"
    assert body["instance"] == "/api/v2/segments/"


@pytest.mark.asyncio
async def test_correlation_id_echoed(client: AsyncClient):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
