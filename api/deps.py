"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from api.config import Settings, get_settings
from api.services.audit_service import AuditService
from api.services.audit_stream import AuditProgressStream

__all__ = ["SettingsDep", "AuditServiceDep", "ProgressStreamDep"]


SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_audit_service(request: Request) -> AuditService:
    """Audit service built at startup."""
    service: AuditService = request.app.state.audit_service
    return service


def get_progress_stream(request: Request) -> AuditProgressStream:
    stream: AuditProgressStream = request.app.state.progress_stream
    return stream


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]
ProgressStreamDep = Annotated[AuditProgressStream, Depends(get_progress_stream)]
