"""Health check endpoints."""

import asyncio
import time
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter
from pydantic import BaseModel, Field

from api.config import get_settings
from api.database import ping_database
from worker.redis import redis_available

router = APIRouter(tags=["Health"])
logger = structlog.get_logger()

API_VERSION = "0.1.0"

# Track server start time for uptime calculation
_server_start_time = time.time()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Health status: healthy, degraded, unhealthy")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str = Field(..., description="API version")
    uptime_seconds: int = Field(..., description="Server uptime in seconds")


class DependencyCheck(BaseModel):
    """Individual dependency check result."""

    status: str = Field(..., description="Status: healthy, unhealthy, disabled")
    latency_ms: float | None = Field(None, description="Check latency in milliseconds")
    error: str | None = Field(None, description="Error message if unhealthy")


class ReadyResponse(HealthResponse):
    """Readiness check response with dependency status."""

    checks: dict[str, DependencyCheck] = Field(..., description="Individual dependency checks")


class ApiInfoResponse(BaseModel):
    """API information response."""

    name: str
    version: str
    env: str
    docs: str | None


def _uptime() -> int:
    return int(time.time() - _server_start_time)


async def _check_database() -> DependencyCheck:
    try:
        return DependencyCheck(status="healthy", latency_ms=await ping_database())
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        return DependencyCheck(status="unhealthy", error=str(e))


async def _check_queue() -> DependencyCheck:
    if not get_settings().audit_queue_enabled:
        # Audits run inline; the queue is not a dependency
        return DependencyCheck(status="disabled")

    start = time.perf_counter()
    if await asyncio.to_thread(redis_available):
        return DependencyCheck(
            status="healthy",
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
    logger.warning("queue_health_check_failed")
    return DependencyCheck(status="unhealthy", error="Redis unreachable")


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns healthy if the API is running. Does not check dependencies.
    Use /ready for full dependency checks.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC).isoformat(),
        version=API_VERSION,
        uptime_seconds=_uptime(),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check() -> ReadyResponse:
    """
    Readiness check with dependency verification.

    The database is required. An unreachable queue only degrades the
    service, since audits then run inline.
    """
    checks = {
        "database": await _check_database(),
        "queue": await _check_queue(),
    }

    if checks["database"].status == "unhealthy":
        overall_status = "unhealthy"
    elif checks["queue"].status == "unhealthy":
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return ReadyResponse(
        status=overall_status,
        timestamp=datetime.now(UTC).isoformat(),
        version=API_VERSION,
        uptime_seconds=_uptime(),
        checks=checks,
    )


@router.get("/", response_model=ApiInfoResponse)
async def root() -> ApiInfoResponse:
    """Root endpoint with API information."""
    settings = get_settings()
    return ApiInfoResponse(
        name="SEO Audit Automation API",
        version=API_VERSION,
        env=settings.env,
        docs="/docs" if settings.debug else None,
    )
