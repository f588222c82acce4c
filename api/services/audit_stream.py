"""Progress stream: polled audit state delivered as typed events."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import orjson
import structlog

from api.models import ProcessingStatus
from api.services.audit_repository import AuditRepository, AuditSnapshot, summary_projection

logger = structlog.get_logger(__name__)

POLL_INTERVAL_MS = 2000
HEARTBEAT_INTERVAL_MS = 15000

NOT_FOUND_MESSAGE = "Audit not found."

Fingerprint = tuple[str, int, str | None, str | None, str | None]


@dataclass
class StreamEvent:
    """One event pushed to a subscriber."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in ("completed", "failed")

    def to_sse(self) -> str:
        """Serialize as a Server-Sent Events frame."""
        payload = orjson.dumps(self.data).decode()
        return f"event: {self.type}\ndata: {payload}\n\n"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def fingerprint(audit: AuditSnapshot) -> Fingerprint:
    return (
        audit.processing_status,
        audit.progress,
        audit.step,
        audit.error,
        _iso(audit.updated_at),
    )


def _progress_payload(audit: AuditSnapshot) -> dict[str, Any]:
    return {
        "auditId": audit.id,
        "status": audit.processing_status,
        "progress": audit.progress,
        "step": audit.step,
        "updatedAt": _iso(audit.updated_at),
    }


def events_for_snapshot(audit: AuditSnapshot, instant_sent: bool) -> list[StreamEvent]:
    """
    Translate a changed audit snapshot into stream events.

    Terminal audits yield a single completed/failed event. A RUNNING audit
    yields a progress event, followed by instant_summary when it has draft
    summary text and none was sent yet.
    """
    status = audit.processing_status

    if status == ProcessingStatus.COMPLETED:
        data = summary_projection(audit)
        data.update(
            step=audit.step,
            fullReport=audit.full_report,
            finishedAt=_iso(audit.finished_at),
        )
        return [StreamEvent("completed", data)]

    if status == ProcessingStatus.FAILED:
        data = _progress_payload(audit)
        data.update(error=audit.error, finishedAt=_iso(audit.finished_at))
        return [StreamEvent("failed", data)]

    events = [StreamEvent("progress", _progress_payload(audit))]
    if status == ProcessingStatus.RUNNING and audit.summary_text and not instant_sent:
        events.append(
            StreamEvent(
                "instant_summary",
                {
                    "auditId": audit.id,
                    "progress": audit.progress,
                    "summaryText": audit.summary_text,
                    "keyChecks": audit.key_checks,
                    "quickWins": audit.quick_wins,
                    "pillarScores": audit.pillar_scores,
                },
            )
        )
    return events


class AuditSubscription:
    """A cancellable subscription to one audit's progress.

    Two timers feed one channel: the poller, which emits on fingerprint
    changes, and the heartbeat. Closing the subscription stops both.
    Consume it with ``async for`` or :meth:`next`.
    """

    def __init__(
        self,
        repository: AuditRepository,
        audit_id: str,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
    ):
        self.repository = repository
        self.audit_id = audit_id
        self.poll_interval = poll_interval_ms / 1000
        self.heartbeat_interval = heartbeat_interval_ms / 1000

        self._channel: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._last_fingerprint: Fingerprint | None = None
        self._instant_sent = False
        self._closed = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_timers(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def start(self) -> "AuditSubscription":
        if not self._tasks and not self._closed:
            self._tasks = [
                asyncio.create_task(self._poll_loop(), name=f"audit-poll-{self.audit_id}"),
                asyncio.create_task(
                    self._heartbeat_loop(), name=f"audit-heartbeat-{self.audit_id}"
                ),
            ]
        return self

    async def poll_once(self) -> list[StreamEvent]:
        """Read the audit once and push whatever events its state calls for."""
        audit = await self.repository.find_by_id(self.audit_id)
        if audit is None:
            event = StreamEvent(
                "failed",
                {"auditId": self.audit_id, "status": None, "error": NOT_FOUND_MESSAGE},
            )
            self._push(event)
            return [event]

        current = fingerprint(audit)
        if current == self._last_fingerprint:
            return []
        self._last_fingerprint = current

        events = events_for_snapshot(audit, self._instant_sent)
        for event in events:
            if event.type == "instant_summary":
                self._instant_sent = True
            self._push(event)
        return events

    def _push(self, event: StreamEvent) -> None:
        if self._closed:
            return
        self._channel.put_nowait(event)
        if event.terminal:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        self._channel.put_nowait(None)

    async def _poll_loop(self) -> None:
        while not self._closed:
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning("audit_stream_poll_failed", audit_id=self.audit_id, error=str(e))
            if self._closed:
                break
            await asyncio.sleep(self.poll_interval)

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self._closed:
                break
            self._channel.put_nowait(
                StreamEvent(
                    "heartbeat",
                    {"auditId": self.audit_id, "ts": datetime.now(UTC).isoformat()},
                )
            )

    async def next(self) -> StreamEvent | None:
        """Next event, or None once the stream has ended."""
        if self._closed and self._channel.empty():
            return None
        event = await self._channel.get()
        if event is None:
            self._channel.put_nowait(None)
        return event

    async def close(self) -> None:
        """Unsubscribe and stop both timers."""
        if not self._closed:
            self._closed = True
            self._channel.put_nowait(None)
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def __aiter__(self) -> "AuditSubscription":
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event


class AuditProgressStream:
    """Factory for audit subscriptions sharing one repository."""

    def __init__(
        self,
        repository: AuditRepository,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
    ):
        self.repository = repository
        self.poll_interval_ms = poll_interval_ms
        self.heartbeat_interval_ms = heartbeat_interval_ms

    def subscribe(self, audit_id: str) -> AuditSubscription:
        return AuditSubscription(
            self.repository,
            audit_id,
            poll_interval_ms=self.poll_interval_ms,
            heartbeat_interval_ms=self.heartbeat_interval_ms,
        ).start()
