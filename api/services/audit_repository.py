"""Persistence for audit requests and their run state."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.database import get_session_maker
from api.models import TERMINAL_STATUSES, AuditRequest, ProcessingStatus

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "processing_status",
        "progress",
        "step",
        "error",
        "done",
        "normalized_url",
        "final_url",
        "redirect_chain",
        "key_checks",
        "quick_wins",
        "pillar_scores",
        "summary_text",
        "full_report",
        "started_at",
        "finished_at",
    }
)


@dataclass
class AuditCreate:
    """Input needed to register a new audit."""

    website_name: str
    contact_method: str
    contact_value: str
    locale: str = "fr"
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    request_id: str | None = None


@dataclass
class AuditSnapshot:
    """Read model of one audit request."""

    id: str
    website_name: str
    contact_method: str
    contact_value: str
    locale: str = "fr"
    processing_status: str = ProcessingStatus.PENDING.value
    progress: int = 0
    step: str | None = None
    error: str | None = None
    done: bool = False
    normalized_url: str | None = None
    final_url: str | None = None
    redirect_chain: list[str] = field(default_factory=list)
    key_checks: dict[str, Any] = field(default_factory=dict)
    quick_wins: list[str] = field(default_factory=list)
    pillar_scores: dict[str, int] = field(default_factory=dict)
    summary_text: str | None = None
    full_report: dict[str, Any] | None = None
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    request_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in TERMINAL_STATUSES


def summary_projection(audit: AuditSnapshot) -> dict[str, Any]:
    """Public summary of an audit; ``ready`` only once it completed."""
    return {
        "auditId": audit.id,
        "ready": audit.processing_status == ProcessingStatus.COMPLETED,
        "status": audit.processing_status,
        "progress": audit.progress,
        "summaryText": audit.summary_text or None,
        "keyChecks": audit.key_checks or {},
        "quickWins": audit.quick_wins or [],
        "pillarScores": audit.pillar_scores or {},
    }


def apply_state_update(current: AuditSnapshot, fields: dict[str, Any]) -> dict[str, Any] | None:
    """
    Filter a state update against the current audit state.

    Returns the fields to write, or None when the audit is already in a
    terminal state. Progress never moves backwards.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown audit fields: {', '.join(sorted(unknown))}")
    if current.is_terminal:
        return None

    changes = dict(fields)
    if "progress" in changes:
        changes["progress"] = max(current.progress, min(100, int(changes["progress"])))
    return changes


def to_snapshot(row: AuditRequest) -> AuditSnapshot:
    return AuditSnapshot(
        id=str(row.id),
        website_name=row.website_name,
        contact_method=row.contact_method,
        contact_value=row.contact_value,
        locale=row.locale,
        processing_status=row.processing_status,
        progress=row.progress,
        step=row.step,
        error=row.error,
        done=row.done,
        normalized_url=row.normalized_url,
        final_url=row.final_url,
        redirect_chain=list(row.redirect_chain or []),
        key_checks=dict(row.key_checks or {}),
        quick_wins=list(row.quick_wins or []),
        pillar_scores=dict(row.pillar_scores or {}),
        summary_text=row.summary_text,
        full_report=row.full_report,
        ip=row.ip,
        user_agent=row.user_agent,
        referer=row.referer,
        request_id=row.request_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        started_at=row.started_at,
        finished_at=row.finished_at,
    )


def _parse_id(audit_id: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(audit_id, uuid.UUID):
        return audit_id
    try:
        return uuid.UUID(str(audit_id))
    except ValueError:
        return None


class AuditRepository(Protocol):
    """Storage contract used by the pipeline, the stream and the API."""

    async def create(self, data: AuditCreate) -> AuditSnapshot: ...

    async def find_by_id(self, audit_id: str) -> AuditSnapshot | None: ...

    async def find_summary_by_id(self, audit_id: str) -> dict[str, Any] | None: ...

    async def update_state(self, audit_id: str, **fields: Any) -> bool: ...


class SqlAlchemyAuditRepository:
    """Audit repository backed by PostgreSQL.

    Each call opens its own short-lived session, so one instance can be
    shared between the pipeline, the progress stream and request handlers.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self._session_maker = session_maker

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_session_maker()

    async def create(self, data: AuditCreate) -> AuditSnapshot:
        async with self._sessions()() as db:
            row = AuditRequest(
                website_name=data.website_name,
                contact_method=data.contact_method,
                contact_value=data.contact_value,
                locale=data.locale,
                ip=data.ip,
                user_agent=data.user_agent,
                referer=data.referer,
                request_id=data.request_id,
                processing_status=ProcessingStatus.PENDING.value,
                progress=0,
                done=False,
                redirect_chain=[],
                key_checks={},
                quick_wins=[],
                pillar_scores={},
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            logger.info("audit_created", audit_id=str(row.id), website=data.website_name)
            return to_snapshot(row)

    async def find_by_id(self, audit_id: str) -> AuditSnapshot | None:
        parsed = _parse_id(audit_id)
        if parsed is None:
            return None
        async with self._sessions()() as db:
            result = await db.execute(select(AuditRequest).where(AuditRequest.id == parsed))
            row = result.scalar_one_or_none()
            return to_snapshot(row) if row else None

    async def find_summary_by_id(self, audit_id: str) -> dict[str, Any] | None:
        audit = await self.find_by_id(audit_id)
        return summary_projection(audit) if audit else None

    async def update_state(self, audit_id: str, **fields: Any) -> bool:
        """
        Apply a partial state update.

        Returns:
            True when the row was updated, False when the audit does not
            exist or is already COMPLETED/FAILED
        """
        parsed = _parse_id(audit_id)
        if parsed is None:
            return False

        async with self._sessions()() as db:
            result = await db.execute(
                select(AuditRequest).where(AuditRequest.id == parsed).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                logger.warning("audit_update_missing", audit_id=str(audit_id))
                return False

            changes = apply_state_update(to_snapshot(row), fields)
            if changes is None:
                logger.debug(
                    "audit_update_ignored_terminal",
                    audit_id=str(audit_id),
                    status=row.processing_status,
                )
                return False

            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = datetime.now(UTC)
            await db.commit()
            return True


def timeout_message(timeout_ms: int) -> str:
    return f"Audit timed out after {timeout_ms}ms"


async def mark_audit_failed(repository: AuditRepository, audit_id: str, error: str) -> bool:
    """
    Persist FAILED for a run that ended outside the pipeline's own handling.

    Used when a run is interrupted from the outside (inline timeout, RQ
    job timeout). A run that already reached a terminal state is left as is.
    """
    return await repository.update_state(
        audit_id,
        processing_status=ProcessingStatus.FAILED.value,
        progress=100,
        done=False,
        error=error,
        finished_at=datetime.now(UTC),
    )
