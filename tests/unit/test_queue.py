"""Tests for the RQ audit queue."""

from dataclasses import replace
from unittest.mock import MagicMock, patch

from rq import Retry

from api.config import AuditAutomationConfig
from worker.queue import AUDIT_JOB_FUNC, AuditJobQueue


class TestAuditJobQueue:
    """Tests for AuditJobQueue.enqueue_audit."""

    def test_enqueue_options(self, audit_config: AuditAutomationConfig) -> None:
        config = replace(audit_config, queue_attempts=3, queue_backoff_ms=2000, job_timeout_ms=180_000)
        with patch("worker.queue.Queue") as queue_cls:
            queue = AuditJobQueue(config, connection=MagicMock())
            queue.enqueue_audit("abc")

        queue_cls.assert_called_once()
        assert queue_cls.call_args.args == (config.queue_name,)
        args, kwargs = queue_cls.return_value.enqueue.call_args
        assert args == (AUDIT_JOB_FUNC, "abc")
        assert kwargs["job_id"] == "audit-abc"
        assert kwargs["job_timeout"] == 180
        assert kwargs["meta"] == {"audit_id": "abc"}
        assert isinstance(kwargs["retry"], Retry)
        assert kwargs["retry"].max == 2

    def test_single_attempt_has_no_retry(self, audit_config: AuditAutomationConfig) -> None:
        config = replace(audit_config, queue_attempts=1)
        with patch("worker.queue.Queue") as queue_cls:
            AuditJobQueue(config, connection=MagicMock()).enqueue_audit("abc")

        assert queue_cls.return_value.enqueue.call_args.kwargs["retry"] is None

    def test_ping_uses_connection(self, audit_config: AuditAutomationConfig) -> None:
        connection = MagicMock()
        connection.ping.side_effect = ConnectionError("down")
        with patch("worker.queue.Queue"):
            queue = AuditJobQueue(audit_config, connection=connection)

        assert queue.ping() is False
