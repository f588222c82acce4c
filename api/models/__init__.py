"""SQLAlchemy models package."""

from api.models.audit import (
    TERMINAL_STATUSES,
    AuditRequest,
    ContactMethod,
    ProcessingStatus,
)

__all__ = [
    "AuditRequest",
    "ContactMethod",
    "ProcessingStatus",
    "TERMINAL_STATUSES",
]
