"""Job service: queue submission with an inline fallback."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Literal

import structlog

from api.config import AuditAutomationConfig
from api.services.audit_repository import (
    AuditRepository,
    mark_audit_failed,
    timeout_message,
)
from worker.queue import AuditJobQueue

logger = structlog.get_logger(__name__)

AuditRunner = Callable[[str], Awaitable[object]]
QueueFactory = Callable[[AuditAutomationConfig], AuditJobQueue]

EnqueueMode = Literal["queued", "inline"]


class AuditJobService:
    """Starts audit runs on the RQ queue, or inline when it is unavailable.

    Inline runs are wrapped in the job timeout. Their failures are logged
    and never reach the caller; the persisted audit state is the source
    of truth for the outcome.
    """

    def __init__(
        self,
        config: AuditAutomationConfig,
        repository: AuditRepository,
        runner: AuditRunner,
        queue_factory: QueueFactory = AuditJobQueue,
    ):
        self.config = config
        self.repository = repository
        self._runner = runner
        self._queue_factory = queue_factory
        self._queue: AuditJobQueue | None = None
        self._inline_tasks: set[asyncio.Task[None]] = set()

    def _get_queue(self) -> AuditJobQueue:
        if self._queue is None:
            self._queue = self._queue_factory(self.config)
        return self._queue

    async def enqueue(self, audit_id: str) -> EnqueueMode:
        """
        Start an audit run.

        Returns:
            "queued" when RQ accepted the job, "inline" when the run was
            scheduled in this process instead
        """
        if self.config.queue_enabled:
            try:
                queue = self._get_queue()
                if await asyncio.to_thread(queue.ping):
                    job = await asyncio.to_thread(queue.enqueue_audit, audit_id)
                    logger.info("audit_job_enqueued", audit_id=audit_id, job_id=job.id)
                    return "queued"
                logger.warning("audit_queue_unreachable", audit_id=audit_id)
            except Exception as e:
                logger.warning("audit_enqueue_failed", audit_id=audit_id, error=str(e))
        else:
            logger.info("audit_queue_disabled", audit_id=audit_id)

        self._schedule_inline(audit_id)
        return "inline"

    def _schedule_inline(self, audit_id: str) -> None:
        task = asyncio.create_task(self._run_inline(audit_id), name=f"audit-inline-{audit_id}")
        self._inline_tasks.add(task)
        task.add_done_callback(self._inline_tasks.discard)

    async def _run_inline(self, audit_id: str) -> None:
        timeout_s = self.config.job_timeout_ms / 1000
        try:
            await asyncio.wait_for(self._runner(audit_id), timeout=timeout_s)
        except TimeoutError:
            logger.error("audit_inline_timeout", audit_id=audit_id, timeout_s=timeout_s)
            await self._mark_timed_out(audit_id)
        except Exception as e:
            logger.exception("audit_inline_failed", audit_id=audit_id, error=str(e))

    async def _mark_timed_out(self, audit_id: str) -> None:
        try:
            await mark_audit_failed(
                self.repository, audit_id, timeout_message(self.config.job_timeout_ms)
            )
        except Exception as e:
            logger.error("audit_timeout_not_persisted", audit_id=audit_id, error=str(e))

    @property
    def pending(self) -> int:
        return len(self._inline_tasks)

    async def wait_idle(self) -> None:
        """Wait for every inline run scheduled so far."""
        if self._inline_tasks:
            await asyncio.gather(*list(self._inline_tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel inline runs that are still in flight."""
        for task in list(self._inline_tasks):
            task.cancel()
        await self.wait_idle()
