"""Tests for the audit job service."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from api.config import AuditAutomationConfig
from api.models import ProcessingStatus
from api.services.job_service import AuditJobService
from tests.fixtures.repository import InMemoryAuditRepository


def queue_factory(ping: bool = True, enqueue_error: Exception | None = None) -> MagicMock:
    queue = MagicMock()
    queue.ping.return_value = ping
    if enqueue_error is not None:
        queue.enqueue_audit.side_effect = enqueue_error
    else:
        queue.enqueue_audit.return_value = MagicMock(id="job-1")
    return MagicMock(return_value=queue)


class TestAuditJobService:
    """Tests for AuditJobService.enqueue and inline runs."""

    async def test_disabled_queue_runs_inline(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        runner = AsyncMock()
        factory = queue_factory()
        jobs = AuditJobService(audit_config, repository, runner, queue_factory=factory)

        mode = await jobs.enqueue("audit-1")
        await jobs.wait_idle()

        assert mode == "inline"
        runner.assert_awaited_once_with("audit-1")
        factory.assert_not_called()
        assert jobs.pending == 0

    async def test_enqueues_when_queue_is_reachable(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        config = replace(audit_config, queue_enabled=True)
        runner = AsyncMock()
        factory = queue_factory()
        jobs = AuditJobService(config, repository, runner, queue_factory=factory)

        mode = await jobs.enqueue("audit-1")

        assert mode == "queued"
        factory.return_value.enqueue_audit.assert_called_once_with("audit-1")
        runner.assert_not_awaited()
        assert jobs.pending == 0

    async def test_unreachable_queue_falls_back(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        config = replace(audit_config, queue_enabled=True)
        runner = AsyncMock()
        jobs = AuditJobService(config, repository, runner, queue_factory=queue_factory(ping=False))

        mode = await jobs.enqueue("audit-1")
        await jobs.wait_idle()

        assert mode == "inline"
        runner.assert_awaited_once_with("audit-1")

    async def test_enqueue_error_falls_back(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        config = replace(audit_config, queue_enabled=True)
        runner = AsyncMock()
        factory = queue_factory(enqueue_error=ConnectionError("redis down"))
        jobs = AuditJobService(config, repository, runner, queue_factory=factory)

        mode = await jobs.enqueue("audit-1")
        await jobs.wait_idle()

        assert mode == "inline"
        runner.assert_awaited_once()

    async def test_inline_timeout_marks_failed(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        audit = repository.add(processing_status=ProcessingStatus.RUNNING.value, progress=40)

        async def slow(audit_id: str) -> None:
            await asyncio.sleep(5)

        config = replace(audit_config, job_timeout_ms=50)
        jobs = AuditJobService(config, repository, slow)

        await jobs.enqueue(audit.id)
        await jobs.wait_idle()

        stored = await repository.find_by_id(audit.id)
        assert stored.processing_status == ProcessingStatus.FAILED
        assert stored.progress == 100
        assert stored.done is False
        assert stored.error == "Audit timed out after 50ms"
        assert stored.finished_at is not None

    async def test_inline_failure_does_not_propagate(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        runner = AsyncMock(side_effect=RuntimeError("boom"))
        jobs = AuditJobService(audit_config, repository, runner)

        assert await jobs.enqueue("audit-1") == "inline"
        await jobs.wait_idle()

        assert repository.history == []

    async def test_shutdown_cancels_inline_runs(
        self,
        audit_config: AuditAutomationConfig,
        repository: InMemoryAuditRepository,
    ) -> None:
        started = asyncio.Event()

        async def slow(audit_id: str) -> None:
            started.set()
            await asyncio.sleep(5)

        jobs = AuditJobService(audit_config, repository, slow)
        await jobs.enqueue("audit-1")
        await started.wait()

        await jobs.shutdown()

        assert jobs.pending == 0
