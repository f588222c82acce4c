"""Audit job queue on top of RQ."""

from redis import Redis
from rq import Callback, Queue, Retry
from rq.job import Job

from api.config import AuditAutomationConfig
from worker.redis import JOB_FAILURE_TTL, JOB_RESULT_TTL, get_redis_connection, redis_available

AUDIT_JOB_FUNC = "worker.tasks.audit.run_audit_job"


def audit_job_id(audit_id: str) -> str:
    return f"audit-{audit_id}"


class AuditJobQueue:
    """Submits audit pipeline runs to the configured RQ queue."""

    def __init__(self, config: AuditAutomationConfig, connection: Redis | None = None):
        self.config = config
        self._conn = connection or get_redis_connection()
        self.queue = Queue(config.queue_name, connection=self._conn)

    def ping(self) -> bool:
        """Check that the queue backend is reachable."""
        return redis_available(self._conn)

    def enqueue_audit(self, audit_id: str) -> Job:
        """
        Enqueue one audit run.

        Attempts beyond the first become RQ retries spaced by the
        configured backoff. The job timeout matches the pipeline budget.
        """
        retries = max(0, self.config.queue_attempts - 1)
        return self.queue.enqueue(
            AUDIT_JOB_FUNC,
            audit_id,
            job_id=audit_job_id(audit_id),
            job_timeout=max(1, self.config.job_timeout_ms // 1000),
            result_ttl=JOB_RESULT_TTL,
            failure_ttl=JOB_FAILURE_TTL,
            retry=Retry(max=retries, interval=self.config.queue_backoff_ms // 1000)
            if retries
            else None,
            meta={"audit_id": audit_id},
            on_success=Callback("worker.main.on_job_success"),
            on_failure=Callback("worker.main.on_job_failure"),
            description=f"audit {audit_id}",
        )
