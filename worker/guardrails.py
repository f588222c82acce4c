"""Execution guardrails for calls to external dependencies.

Three primitives compose around every fetch and generative call:

* ``DeadlineBudget`` - a fixed end time shared by nested calls.
* ``with_hard_timeout`` - races an operation against
  ``min(requested timeout, remaining budget)`` and cancels it on expiry.
* ``InFlightLimiter`` - a FIFO counting semaphore bounding concurrent
  calls to a shared backend for the whole process.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class DeadlineExceededError(TimeoutError):
    """Raised when a guarded operation runs out of time."""

    def __init__(self, label: str, message: str):
        self.label = label
        super().__init__(message)


class DeadlineBudget:
    """A wall-clock allowance computed once at creation."""

    def __init__(self, total_ms: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.total_ms = max(0.0, float(total_ms))
        self.started_at = clock()
        self.deadline = self.started_at + self.total_ms / 1000

    def remaining_ms(self) -> float:
        """Milliseconds left before the deadline (never negative)."""
        return max(0.0, (self.deadline - self._clock()) * 1000)

    def elapsed_ms(self) -> float:
        """Milliseconds since the budget was created."""
        return (self._clock() - self.started_at) * 1000

    def has_time(self, min_ms: float = 1.0) -> bool:
        """Check if at least ``min_ms`` remain."""
        return self.remaining_ms() >= min_ms

    def child_timeout_ms(self, requested_ms: float) -> float:
        """Shrink a nested call's timeout so it fits inside this budget."""
        return max(0.0, min(float(requested_ms), self.remaining_ms()))


async def with_hard_timeout(
    label: str,
    timeout_ms: float,
    operation: Callable[[], Awaitable[T]],
    budget: DeadlineBudget | None = None,
) -> T:
    """
    Run ``operation`` under a hard timeout.

    Args:
        label: Name used in error messages and logs
        timeout_ms: Requested timeout in milliseconds
        operation: Zero-argument coroutine factory
        budget: Optional inherited deadline that can only shrink the timeout

    Returns:
        The operation result

    Raises:
        DeadlineExceededError: If no time remains or the timeout expires
    """
    effective_ms = budget.child_timeout_ms(timeout_ms) if budget else float(timeout_ms)
    if effective_ms <= 0:
        raise DeadlineExceededError(label, f"{label} skipped: no deadline remaining")

    task = asyncio.ensure_future(operation())
    try:
        done, _ = await asyncio.wait({task}, timeout=effective_ms / 1000)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.cancel()
    # Let the operation unwind before reporting the timeout
    await asyncio.gather(task, return_exceptions=True)
    logger.debug("hard_timeout_expired", label=label, timeout_ms=round(effective_ms))
    raise DeadlineExceededError(label, f"{label} timed out after {round(effective_ms)}ms")


class InFlightLimiter:
    """Counting semaphore with a strict FIFO wait queue."""

    def __init__(self, max_in_flight: int):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.max_in_flight = max_in_flight
        self._in_flight = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def current_in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        """Take a slot, waiting in arrival order when the limit is reached."""
        if self._in_flight < self.max_in_flight and not self.waiting:
            self._in_flight += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over right before cancellation
                self.release()
            raise

    def release(self) -> None:
        """Hand the slot to the oldest live waiter, or free it."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._in_flight > 0:
            self._in_flight -= 1

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` while holding one slot."""
        await self.acquire()
        try:
            return await operation()
        finally:
            self.release()
