"""Audit use cases behind the HTTP routes."""

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from api.exceptions import NotFoundError
from api.metrics import record_audit_created
from api.schemas.audit import AuditCreateRequest, AuditCreateResponse
from api.services.audit_repository import AuditCreate, AuditRepository, AuditSnapshot
from api.services.job_service import AuditJobService
from api.services.mailer import AuditMailer
from worker.locale import resolve_request_locale

logger = structlog.get_logger(__name__)

CREATED_MESSAGE = "Audit request created successfully."


@dataclass
class RequestContext:
    """Client metadata captured with a new audit request."""

    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    accept_language: str | None = None
    request_id: str | None = None


class AuditService:
    """Creates audits, hands them to the job layer and reads summaries."""

    def __init__(
        self,
        repository: AuditRepository,
        jobs: AuditJobService,
        mailer: AuditMailer | None = None,
    ):
        self.repository = repository
        self.jobs = jobs
        self.mailer = mailer
        self._notifications: set[asyncio.Task[Any]] = set()

    async def create_audit(
        self, payload: AuditCreateRequest, context: RequestContext
    ) -> AuditCreateResponse:
        """
        Register an audit request and start its run.

        The locale comes from the payload, then the referring page path,
        then Accept-Language.
        """
        locale = resolve_request_locale(
            payload.locale,
            referer=context.referer,
            accept_language=context.accept_language,
        )
        audit = await self.repository.create(
            AuditCreate(
                website_name=payload.website_name,
                contact_method=payload.contact_method.value,
                contact_value=payload.contact_value,
                locale=locale,
                ip=context.ip,
                user_agent=context.user_agent,
                referer=context.referer,
                request_id=context.request_id,
            )
        )
        record_audit_created()

        mode = await self.jobs.enqueue(audit.id)
        logger.info("audit_request_accepted", audit_id=audit.id, locale=locale, mode=mode)

        self._notify_new_request(audit)

        return AuditCreateResponse(
            message=CREATED_MESSAGE,
            http_code=201,
            audit_id=audit.id,
            status=audit.processing_status,
        )

    async def get_summary(self, audit_id: str) -> dict[str, Any]:
        summary = await self.repository.find_summary_by_id(audit_id)
        if summary is None:
            raise NotFoundError()
        return summary

    async def ensure_exists(self, audit_id: str) -> AuditSnapshot:
        audit = await self.repository.find_by_id(audit_id)
        if audit is None:
            raise NotFoundError()
        return audit

    def _notify_new_request(self, audit: AuditSnapshot) -> None:
        if self.mailer is None:
            return
        task = asyncio.create_task(
            self.mailer.send_new_request_notification(audit),
            name=f"audit-new-request-mail-{audit.id}",
        )
        self._notifications.add(task)
        task.add_done_callback(self._on_notification_done)

    def _on_notification_done(self, task: asyncio.Task[Any]) -> None:
        self._notifications.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("audit_new_request_mail_failed", error=str(error))
            return
        result = task.result()
        if not getattr(result, "success", True):
            logger.warning("audit_new_request_mail_not_sent", error=result.error)

    async def drain(self) -> None:
        """Wait for pending notification emails."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)
