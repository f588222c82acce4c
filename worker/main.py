"""RQ worker entrypoint for the audit queue."""

import asyncio
import os
import platform

import structlog
from rq import SimpleWorker, Worker
from rq.job import Job
from rq.timeouts import JobTimeoutException

from api.config import AuditAutomationConfig, get_settings
from api.database import reset_engine
from api.logging import setup_logging
from api.services.audit_repository import (
    SqlAlchemyAuditRepository,
    mark_audit_failed,
    timeout_message,
)
from worker.redis import get_redis_connection
from worker.tasks.audit import to_safe_error

logger = structlog.get_logger(__name__)


def on_job_success(job: Job, _connection: object, result: object, *_args: object) -> None:
    """Called when a job succeeds."""
    logger.info("audit_job_completed", job_id=job.id, result=str(result)[:100])


def job_failure_message(exc_value: BaseException, config: AuditAutomationConfig) -> str:
    if isinstance(exc_value, JobTimeoutException):
        return timeout_message(config.job_timeout_ms)
    return to_safe_error(exc_value)


async def persist_job_failure(audit_id: str, error: str) -> bool:
    """Mark an audit FAILED from outside its pipeline run."""
    try:
        return await mark_audit_failed(SqlAlchemyAuditRepository(), audit_id, error)
    except Exception as e:
        logger.error("audit_failure_not_persisted", audit_id=audit_id, error=str(e))
        return False


def on_job_failure(
    job: Job,
    _connection: object,
    _exc_type: type,
    exc_value: BaseException,
    _traceback: object,
) -> None:
    """
    Called when a job raises out of RQ (job timeout, crash).

    The pipeline persists its own failures, so this only sees runs that
    were interrupted. Once no retry is left the audit is marked FAILED.
    """
    audit_id = (job.meta or {}).get("audit_id")
    if job.retries_left:
        logger.warning(
            "audit_job_failed_retrying",
            job_id=job.id,
            audit_id=audit_id,
            retries_left=job.retries_left,
            error=str(exc_value),
        )
        return

    logger.warning("audit_job_failed", job_id=job.id, audit_id=audit_id, error=str(exc_value))
    if audit_id is None:
        return

    error = job_failure_message(exc_value, get_settings().audit_config())
    # The interrupted run left its loop and connections behind
    reset_engine()
    asyncio.run(persist_job_failure(audit_id, error))


def run_worker() -> None:
    """Start the RQ worker (or a worker pool) for the audit queue."""
    settings = get_settings()
    setup_logging()
    config = settings.audit_config()
    redis_conn = get_redis_connection()
    queues = [config.queue_name]

    logger.info(
        "audit_worker_starting",
        env=settings.env,
        queues=queues,
        concurrency=config.queue_concurrency,
    )

    # Use SimpleWorker on Windows (no os.fork() support)
    worker_class = SimpleWorker if platform.system() == "Windows" else Worker

    if config.queue_concurrency > 1 and worker_class is Worker:
        from rq.worker_pool import WorkerPool

        pool = WorkerPool(
            queues,
            connection=redis_conn,
            num_workers=config.queue_concurrency,
            worker_class=worker_class,
        )
        pool.start(logging_level=settings.log_level)
        return

    worker = worker_class(
        queues,
        connection=redis_conn,
        name=f"audit-worker-{os.getpid()}",
    )
    worker.work(logging_level=settings.log_level)


if __name__ == "__main__":
    run_worker()
