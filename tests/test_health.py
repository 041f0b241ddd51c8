"""Health endpoint tests."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from taskstake.database import get_engine
from taskstake.db.base import Base


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness_without_redis(client: AsyncClient) -> None:
    """GET /ready reports the ledger tables and flags the missing Redis pool."""
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["redis"] == "error: redis not initialized"


@pytest.mark.asyncio
async def test_readiness_all_ok(client: AsyncClient, monkeypatch) -> None:
    redis = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    monkeypatch.setattr("taskstake.health.router.get_optional_redis", lambda: redis)

    response = await client.get("/ready")

    assert response.json() == {"status": "ready", "checks": {"database": "ok", "redis": "ok"}}
    redis.ping.assert_awaited_once()


@pytest.mark.asyncio
async def test_readiness_without_schema(client: AsyncClient) -> None:
    """A reachable database without the balance tables is not ready."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    response = await client.get("/ready")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["database"].startswith("error")


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "0.1.0", "environment": "development"}


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"
