"""In-memory audit repository for tests."""

import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from api.models import ProcessingStatus
from api.services.audit_repository import (
    AuditCreate,
    AuditSnapshot,
    apply_state_update,
    summary_projection,
)


class InMemoryAuditRepository:
    """Dict-backed implementation of the audit repository contract.

    Every applied update is recorded in ``history`` so tests can assert
    on the sequence of persisted states.
    """

    def __init__(self) -> None:
        self.audits: dict[str, AuditSnapshot] = {}
        self.history: list[dict[str, Any]] = []
        self._tick = datetime(2026, 1, 1, tzinfo=UTC)

    def _now(self) -> datetime:
        # Strictly increasing timestamps keep stream fingerprints distinct
        self._tick += timedelta(milliseconds=1)
        return self._tick

    async def create(self, data: AuditCreate) -> AuditSnapshot:
        audit_id = str(uuid.uuid4())
        now = self._now()
        audit = AuditSnapshot(
            id=audit_id,
            website_name=data.website_name,
            contact_method=data.contact_method,
            contact_value=data.contact_value,
            locale=data.locale,
            ip=data.ip,
            user_agent=data.user_agent,
            referer=data.referer,
            request_id=data.request_id,
            processing_status=ProcessingStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self.audits[audit_id] = audit
        return replace(audit)

    def add(self, **fields: Any) -> AuditSnapshot:
        """Insert an audit directly, bypassing create."""
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("website_name", "example.com")
        fields.setdefault("contact_method", "EMAIL")
        fields.setdefault("contact_value", "owner@example.com")
        fields.setdefault("updated_at", self._now())
        audit = AuditSnapshot(**fields)
        self.audits[audit.id] = audit
        return audit

    async def find_by_id(self, audit_id: str) -> AuditSnapshot | None:
        audit = self.audits.get(str(audit_id))
        return replace(audit) if audit else None

    async def find_summary_by_id(self, audit_id: str) -> dict[str, Any] | None:
        audit = self.audits.get(str(audit_id))
        return summary_projection(audit) if audit else None

    async def update_state(self, audit_id: str, **fields: Any) -> bool:
        audit = self.audits.get(str(audit_id))
        if audit is None:
            return False
        changes = apply_state_update(audit, fields)
        if changes is None:
            return False
        self.audits[audit.id] = replace(audit, **changes, updated_at=self._now())
        self.history.append(changes)
        return True

    def progress_values(self) -> list[int]:
        return [entry["progress"] for entry in self.history if "progress" in entry]
