"""Progress helpers for the audit pipeline."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

RECENT_URLS_WINDOW = 5


def interpolate(done: int, total: int, start: int, end: int) -> int:
    """
    Map ``done/total`` onto the ``[start, end]`` progress range.

    Returns ``start`` when there is nothing to do and never leaves the
    range, whatever ``done`` is.
    """
    if total <= 0:
        return start
    ratio = min(1.0, max(0.0, done / total))
    return start + int((end - start) * ratio)


class ProgressWriteQueue:
    """Serializes progress writes for one phase of one audit.

    Writes run one at a time in submission order. A write whose done
    count is not above the last applied one is dropped, so a worker that
    finishes late cannot move persisted progress backwards.
    """

    def __init__(self, write: Callable[[dict[str, Any]], Awaitable[None]], phase: str = ""):
        self._write = write
        self._lock = asyncio.Lock()
        self._last_done = -1
        self.phase = phase
        self.applied = 0
        self.dropped = 0

    async def submit(self, done: int, fields: dict[str, Any]) -> bool:
        """Persist ``fields`` unless a higher done count already landed."""
        async with self._lock:
            if done <= self._last_done:
                self.dropped += 1
                logger.debug(
                    "progress_write_dropped",
                    phase=self.phase,
                    done=done,
                    last_done=self._last_done,
                )
                return False
            await self._write(fields)
            self._last_done = done
            self.applied += 1
            return True


class RecentUrls:
    """Rolling window of the most recently completed URLs."""

    def __init__(self, size: int = RECENT_URLS_WINDOW):
        self._urls: deque[str] = deque(maxlen=size)

    def push(self, url: str) -> list[str]:
        self._urls.append(url)
        return list(self._urls)

    def snapshot(self) -> list[str]:
        return list(self._urls)
