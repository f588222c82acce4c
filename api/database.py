"""Database engine and session factory for the audit store."""

import time
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for the audit tables."""


@lru_cache
def get_engine() -> AsyncEngine:
    """
    Build the async engine on first use.

    Importing the API or the worker never opens a connection; the pool
    is small because every repository call holds a session only briefly.
    """
    from api.config import get_settings

    settings = get_settings()
    return create_async_engine(
        str(settings.database_url),
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


@lru_cache
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False, autoflush=False)


async def ping_database() -> float:
    """Run ``SELECT 1`` and return the round trip in milliseconds."""
    start = time.perf_counter()
    async with get_session_maker()() as session:
        await session.execute(text("SELECT 1"))
    return round((time.perf_counter() - start) * 1000, 2)


def reset_engine() -> None:
    """
    Drop the cached engine and session factory.

    Each RQ job runs its own event loop and asyncpg connections cannot
    cross loops.
    """
    get_engine.cache_clear()
    get_session_maker.cache_clear()
