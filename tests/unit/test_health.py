"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

from httpx import AsyncClient

from api.routers.health import DependencyCheck


async def test_health_check(client: AsyncClient) -> None:
    """Test health endpoint returns healthy status."""
    response = await client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["version"] == "0.1.0"


async def test_api_root_returns_info(client: AsyncClient) -> None:
    """Test API root endpoint returns API info."""
    response = await client.get("/api/")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "SEO Audit Automation API"
    assert data["version"] == "0.1.0"
    assert data["env"] == "test"


async def test_v1_root(client: AsyncClient) -> None:
    """Test v1 API root endpoint."""
    response = await client.get("/v1/")

    assert response.status_code == 200
    assert response.json() == {"version": "1", "status": "active"}


async def test_ready_with_disabled_queue(client: AsyncClient) -> None:
    """Queue reports disabled when audits run inline."""
    healthy = AsyncMock(return_value=DependencyCheck(status="healthy", latency_ms=1.0))
    with patch("api.routers.health._check_database", new=healthy):
        response = await client.get("/api/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["status"] == "healthy"
    assert data["checks"]["queue"]["status"] == "disabled"


async def test_ready_unhealthy_database(client: AsyncClient) -> None:
    """Test ready endpoint reports an unreachable database."""
    down = AsyncMock(return_value=DependencyCheck(status="unhealthy", error="refused"))
    with patch("api.routers.health._check_database", new=down):
        response = await client.get("/api/ready")

    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["checks"]["database"]["error"] == "refused"


async def test_ready_degraded_queue(client: AsyncClient) -> None:
    """An unreachable queue only degrades readiness."""
    healthy = AsyncMock(return_value=DependencyCheck(status="healthy"))
    queue_down = AsyncMock(return_value=DependencyCheck(status="unhealthy", error="Redis unreachable"))
    with (
        patch("api.routers.health._check_database", new=healthy),
        patch("api.routers.health._check_queue", new=queue_down),
    ):
        response = await client.get("/api/ready")

    assert response.json()["status"] == "degraded"


async def test_metrics_endpoint(client: AsyncClient) -> None:
    """Test the Prometheus scrape endpoint."""
    await client.get("/v1/")
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text
