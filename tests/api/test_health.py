"""Smoke tests for health probes and app wiring."""

from httpx import AsyncClient


async def test_health_returns_ok(client: AsyncClient) -> None:
    """GET /api/v1/health returns 200, status ok and the app version."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == "1.0.0"


async def test_ready_with_database_and_redis_disabled(client: AsyncClient) -> None:
    """GET /api/v1/health/ready checks the database; redis is null when disabled."""
    response = await client.get("/api/v1/health/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": True, "redis": None}


async def test_correlation_id_is_echoed(client: AsyncClient) -> None:
    """The X-Correlation-ID request header comes back on the response."""
    response = await client.get("/api/v1/health", headers={"X-Correlation-ID": "req-123"})
    assert response.headers["X-Correlation-ID"] == "req-123"


async def test_unknown_route_is_json_404(client: AsyncClient) -> None:
    response = await client.get("/api/v1/nope")
    assert response.status_code == 404
    assert response.json()["error"] == "HTTP_ERROR"


async def test_error_body_carries_correlation_id(client: AsyncClient) -> None:
    response = await client.get("/api/v1/nope", headers={"X-Correlation-ID": "req-9"})
    assert response.json()["correlation_id"] == "req-9"
