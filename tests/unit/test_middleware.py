"""Tests for middleware components."""

from httpx import AsyncClient

from api.middleware import REQUEST_ID_HEADER, LoggingMiddleware


class TestRequestIDMiddleware:
    """Tests for request ID propagation."""

    async def test_generates_request_id(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")

        assert response.headers[REQUEST_ID_HEADER]

    async def test_echoes_request_id(self, client: AsyncClient) -> None:
        response = await client.get("/api/health", headers={REQUEST_ID_HEADER: "req-123"})

        assert response.headers[REQUEST_ID_HEADER] == "req-123"


class TestLoggingMiddleware:
    """Tests for access logging."""

    def test_quiet_paths(self) -> None:
        assert "/api/health" in LoggingMiddleware.QUIET_PATHS
        assert "/metrics" in LoggingMiddleware.QUIET_PATHS
