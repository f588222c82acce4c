"""SEO audit engine - Worker Package."""

# Lazy imports to avoid requiring all dependencies at import time
# Use explicit imports when these are needed:
# from worker.queue import AuditJobQueue
# from worker.tasks.audit import AuditPipeline, run_audit, run_audit_job
