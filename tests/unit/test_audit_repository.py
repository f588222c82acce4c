"""Tests for audit state update rules and the summary projection."""

import pytest

from api.models import ProcessingStatus
from api.services.audit_repository import AuditSnapshot, apply_state_update, summary_projection


def make_audit(**fields) -> AuditSnapshot:
    fields.setdefault("id", "audit-1")
    fields.setdefault("website_name", "example.com")
    fields.setdefault("contact_method", "EMAIL")
    fields.setdefault("contact_value", "owner@example.com")
    return AuditSnapshot(**fields)


class TestApplyStateUpdate:
    """Tests for apply_state_update."""

    def test_progress_never_decreases(self) -> None:
        audit = make_audit(processing_status=ProcessingStatus.RUNNING.value, progress=40)

        assert apply_state_update(audit, {"progress": 30}) == {"progress": 40}
        assert apply_state_update(audit, {"progress": 55}) == {"progress": 55}
        assert apply_state_update(audit, {"progress": 140}) == {"progress": 100}

    def test_terminal_audits_are_immutable(self) -> None:
        for status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED):
            audit = make_audit(processing_status=status.value, progress=100)
            assert apply_state_update(audit, {"step": "late write"}) is None

    def test_unknown_fields_are_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown audit fields: website_name"):
            apply_state_update(make_audit(), {"website_name": "other.com"})


class TestSummaryProjection:
    """Tests for summary_projection."""

    def test_ready_only_when_completed(self) -> None:
        running = make_audit(processing_status=ProcessingStatus.RUNNING.value, summary_text="")
        completed = make_audit(processing_status=ProcessingStatus.COMPLETED.value)

        assert summary_projection(running)["ready"] is False
        assert summary_projection(running)["summaryText"] is None
        assert summary_projection(completed)["ready"] is True

    def test_defaults(self) -> None:
        projection = summary_projection(make_audit())

        assert projection["auditId"] == "audit-1"
        assert projection["status"] == ProcessingStatus.PENDING
        assert projection["progress"] == 0
        assert projection["keyChecks"] == {}
        assert projection["quickWins"] == []
        assert projection["pillarScores"] == {}
