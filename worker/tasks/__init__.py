"""Background task definitions."""

from worker.tasks.audit import AuditPipeline, run_audit, run_audit_job
from worker.tasks.progress import ProgressWriteQueue, RecentUrls, interpolate

__all__ = [
    "AuditPipeline",
    "run_audit",
    "run_audit_job",
    "ProgressWriteQueue",
    "RecentUrls",
    "interpolate",
]
