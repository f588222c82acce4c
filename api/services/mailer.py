"""Email notifications for audit requests."""

import html
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from api.config import Settings, get_settings
from api.services.audit_repository import AuditSnapshot

logger = structlog.get_logger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
MAX_PRIORITIES_IN_EMAIL = 5


@dataclass
class NotificationResult:
    """Result of a notification delivery attempt."""

    success: bool
    channel: str = "email"
    error: str | None = None
    response_time_ms: int | None = None


@dataclass
class EmailMessage:
    subject: str
    text: str
    html: str


def build_new_request_message(audit: AuditSnapshot) -> EmailMessage:
    website = audit.website_name
    contact = f"{audit.contact_method} - {audit.contact_value}"
    text = (
        "NOUVELLE DEMANDE D'AUDIT\n"
        "-------------------------\n\n"
        f"Site / activite : {website}\n"
        f"Contact        : {contact}\n"
        f"Langue         : {audit.locale}\n"
        f"Audit          : {audit.id}"
    )
    body = (
        "<h2>Nouvelle demande d'audit SEO</h2>"
        "<table>"
        f"<tr><td><b>Site / activite</b></td><td>{html.escape(website)}</td></tr>"
        f"<tr><td><b>Contact</b></td><td>{html.escape(contact)}</td></tr>"
        f"<tr><td><b>Langue</b></td><td>{html.escape(audit.locale)}</td></tr>"
        "</table>"
        "<p>Demande envoyee depuis la page d'audit gratuit du site.</p>"
    )
    return EmailMessage(subject="Nouvelle demande d'audit SEO", text=text, html=body)


def build_report_message(
    audit_id: str,
    website_name: str,
    contact_method: str,
    contact_value: str,
    locale: str,
    summary_text: str,
    full_report: dict[str, Any],
) -> EmailMessage:
    """Internal report notification with summary, scores and top priorities."""
    llm_report = full_report.get("llm") or {}
    priorities = [
        entry.get("title", "")
        for entry in (llm_report.get("priorities") or [])[:MAX_PRIORITIES_IN_EMAIL]
        if isinstance(entry, dict)
    ]
    scores = (full_report.get("scoring") or {}).get("pillarScores") or {}
    score_line = ", ".join(f"{name}: {value}/100" for name, value in scores.items())
    cost = llm_report.get("costEstimate") or {}

    lines = [
        f"Audit {audit_id} ({locale})",
        f"Site : {website_name}",
        f"Contact : {contact_method} - {contact_value}",
        "",
        summary_text,
        "",
        f"Scores : {score_line or 'n/a'}",
    ]
    if priorities:
        lines += ["", "Priorites :", *(f"- {title}" for title in priorities)]
    if cost:
        lines += [
            "",
            f"Estimation : {cost.get('totalEstimatedHours')} h, "
            f"{cost.get('estimatedCostMin')}-{cost.get('estimatedCostMax')} {cost.get('currency')}",
        ]

    items = "".join(f"<li>{html.escape(title)}</li>" for title in priorities)
    body = (
        f"<h2>Rapport d'audit SEO: {html.escape(website_name)}</h2>"
        f"<p><b>Contact</b>: {html.escape(contact_method)} - {html.escape(contact_value)}</p>"
        f"<p>{html.escape(summary_text).replace(chr(10), '<br>')}</p>"
        f"<p><b>Scores</b>: {html.escape(score_line or 'n/a')}</p>"
        + (f"<ul>{items}</ul>" if items else "")
    )
    return EmailMessage(
        subject=f"Rapport d'audit SEO: {website_name}",
        text="\n".join(lines),
        html=body,
    )


class AuditMailer:
    """Sends audit notifications to the configured recipient.

    Delivery goes through the SendGrid v3 API when a key is configured;
    otherwise messages are only logged. Sending never raises.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self.timeout = timeout

    async def send_new_request_notification(self, audit: AuditSnapshot) -> NotificationResult:
        return await self._send(build_new_request_message(audit), audit_id=audit.id)

    async def send_audit_report_notification(
        self,
        audit_id: str,
        website_name: str,
        contact_method: str,
        contact_value: str,
        locale: str,
        summary_text: str,
        full_report: dict[str, Any],
    ) -> NotificationResult:
        message = build_report_message(
            audit_id,
            website_name,
            contact_method,
            contact_value,
            locale,
            summary_text,
            full_report,
        )
        return await self._send(message, audit_id=audit_id)

    async def _send(self, message: EmailMessage, audit_id: str) -> NotificationResult:
        recipient = self.settings.audit_report_recipient
        if not recipient:
            return NotificationResult(success=False, error="No recipient configured")

        if not self.settings.sendgrid_api_key:
            logger.info(
                "audit_email_logged",
                audit_id=audit_id,
                recipient=recipient,
                subject=message.subject,
            )
            return NotificationResult(success=True)

        payload = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {
                "email": self.settings.email_from_address,
                "name": self.settings.email_from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        start = time.perf_counter()

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    SENDGRID_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.settings.sendgrid_api_key}"},
                )
        except httpx.TimeoutException:
            logger.error("audit_email_timeout", audit_id=audit_id)
            return NotificationResult(success=False, error="Request timeout")
        except httpx.HTTPError as e:
            logger.error("audit_email_error", audit_id=audit_id, error=str(e))
            return NotificationResult(success=False, error=str(e))

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        if response.is_success:
            logger.info(
                "audit_email_sent",
                audit_id=audit_id,
                subject=message.subject,
                elapsed_ms=elapsed_ms,
            )
            return NotificationResult(success=True, response_time_ms=elapsed_ms)

        logger.warning(
            "audit_email_failed",
            audit_id=audit_id,
            status_code=response.status_code,
        )
        return NotificationResult(
            success=False,
            error=f"HTTP {response.status_code}",
            response_time_ms=elapsed_ms,
        )
