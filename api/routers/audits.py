"""Audit request endpoints."""

from collections.abc import AsyncGenerator

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import StreamingResponse

from api.deps import AuditServiceDep, ProgressStreamDep
from api.schemas import ErrorResponse
from api.schemas.audit import AuditCreateRequest, AuditCreateResponse, AuditSummaryResponse
from api.services.audit_service import RequestContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/audits", tags=["audits"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post(
    "",
    response_model=AuditCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a website audit",
)
async def create_audit(
    payload: AuditCreateRequest,
    request: Request,
    service: AuditServiceDep,
) -> AuditCreateResponse:
    """
    Register an audit request and start the audit run.

    The run happens in the background; follow it with the summary or
    stream endpoints.
    """
    context = RequestContext(
        ip=_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        referer=request.headers.get("Referer"),
        accept_language=request.headers.get("Accept-Language"),
        request_id=getattr(request.state, "request_id", None),
    )
    return await service.create_audit(payload, context)


@router.get(
    "/{audit_id}/summary",
    response_model=AuditSummaryResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get the audit summary",
)
async def get_audit_summary(audit_id: str, service: AuditServiceDep) -> dict:
    """Summary projection; ``ready`` turns true once the audit completed."""
    return await service.get_summary(audit_id)


@router.get("/{audit_id}/stream", summary="Stream audit progress")
async def stream_audit(audit_id: str, stream: ProgressStreamDep) -> StreamingResponse:
    """Stream audit progress via Server-Sent Events."""
    subscription = stream.subscribe(audit_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for event in subscription:
                yield event.to_sse()
        finally:
            await subscription.close()
            logger.debug("audit_stream_closed", audit_id=audit_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
