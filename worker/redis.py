"""Redis connection utilities."""

from functools import lru_cache

from redis import ConnectionPool, Redis

from api.config import get_settings

# Audit jobs only need their result long enough to be inspected
JOB_RESULT_TTL = 60 * 60
JOB_FAILURE_TTL = 60 * 60 * 24


@lru_cache
def get_redis_pool() -> ConnectionPool:
    """Get a cached Redis connection pool for byte-mode (RQ)."""
    settings = get_settings()
    return ConnectionPool.from_url(
        str(settings.redis_url),
        decode_responses=False,
        max_connections=10,
        socket_connect_timeout=2,
    )


def get_redis_connection() -> Redis:
    """Get a Redis connection from the pool, usable by RQ."""
    return Redis(connection_pool=get_redis_pool())


def redis_available(conn: Redis | None = None) -> bool:
    """Ping Redis; any connection problem counts as unavailable."""
    try:
        return bool((conn or get_redis_connection()).ping())
    except Exception:
        return False
