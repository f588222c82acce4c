"""Tests for the audit endpoints."""

import asyncio
from unittest.mock import AsyncMock

import orjson
from httpx import AsyncClient

from api.models import ProcessingStatus
from tests.fixtures.repository import InMemoryAuditRepository

VALID_PAYLOAD = {
    "websiteName": "  example.com ",
    "contactMethod": "EMAIL",
    "contactValue": "owner@example.com",
}


def parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for frame in body.strip().split("\n\n"):
        event_line, data_line = frame.split("\n")
        events.append(
            (event_line.removeprefix("event: "), orjson.loads(data_line.removeprefix("data: ")))
        )
    return events


class TestCreateAudit:
    """Tests for POST /v1/audits."""

    async def test_creates_audit(
        self,
        client: AsyncClient,
        repository: InMemoryAuditRepository,
        audit_runner: AsyncMock,
        mailer: AsyncMock,
    ) -> None:
        response = await client.post(
            "/v1/audits",
            json=VALID_PAYLOAD,
            headers={"Accept-Language": "en-US,en;q=0.9", "User-Agent": "pytest"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Audit request created successfully."
        assert data["httpCode"] == 201
        assert data["status"] == ProcessingStatus.PENDING

        audit = repository.audits[data["auditId"]]
        assert audit.website_name == "example.com"
        assert audit.locale == "en"
        assert audit.user_agent == "pytest"
        assert audit.request_id == response.headers["X-Request-ID"]

        await asyncio.sleep(0.01)
        audit_runner.assert_awaited_once_with(data["auditId"])
        mailer.send_new_request_notification.assert_awaited_once()

    async def test_explicit_locale_wins(
        self, client: AsyncClient, repository: InMemoryAuditRepository
    ) -> None:
        response = await client.post(
            "/v1/audits",
            json={**VALID_PAYLOAD, "locale": "FR"},
            headers={"Accept-Language": "en-US", "Referer": "https://asili.example/en/audit"},
        )

        assert repository.audits[response.json()["auditId"]].locale == "fr"

    async def test_referer_locale(
        self, client: AsyncClient, repository: InMemoryAuditRepository
    ) -> None:
        response = await client.post(
            "/v1/audits",
            json=VALID_PAYLOAD,
            headers={"Referer": "https://asili.example/en/free-audit"},
        )

        assert repository.audits[response.json()["auditId"]].locale == "en"

    async def test_rejects_invalid_payload(
        self, client: AsyncClient, repository: InMemoryAuditRepository
    ) -> None:
        response = await client.post(
            "/v1/audits",
            json={**VALID_PAYLOAD, "contactMethod": "FAX"},
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["field"] == "contactMethod"
        assert repository.audits == {}

    async def test_rejects_short_website(self, client: AsyncClient) -> None:
        response = await client.post("/v1/audits", json={**VALID_PAYLOAD, "websiteName": " a "})

        assert response.status_code == 422
        assert response.json()["error"]["field"] == "websiteName"

    async def test_rejects_unsupported_locale(self, client: AsyncClient) -> None:
        response = await client.post("/v1/audits", json={**VALID_PAYLOAD, "locale": "de"})

        assert response.status_code == 422


class TestAuditSummary:
    """Tests for GET /v1/audits/{id}/summary."""

    async def test_not_found(self, client: AsyncClient) -> None:
        response = await client.get("/v1/audits/unknown/summary")

        assert response.status_code == 404
        assert response.json() == {
            "error": {"code": "not_found", "message": "Audit not found."}
        }

    async def test_running_summary(
        self, client: AsyncClient, repository: InMemoryAuditRepository
    ) -> None:
        audit = repository.add(
            processing_status=ProcessingStatus.RUNNING.value,
            progress=20,
            summary_text="Premier diagnostic disponible.",
            quick_wins=["Ajouter un H1"],
            pillar_scores={"seo": 70},
        )

        response = await client.get(f"/v1/audits/{audit.id}/summary")

        assert response.status_code == 200
        assert response.json() == {
            "auditId": audit.id,
            "ready": False,
            "status": "RUNNING",
            "progress": 20,
            "summaryText": "Premier diagnostic disponible.",
            "keyChecks": {},
            "quickWins": ["Ajouter un H1"],
            "pillarScores": {"seo": 70},
        }


class TestAuditStream:
    """Tests for GET /v1/audits/{id}/stream."""

    async def test_completed_audit(
        self, client: AsyncClient, repository: InMemoryAuditRepository
    ) -> None:
        audit = repository.add(
            processing_status=ProcessingStatus.COMPLETED.value,
            progress=100,
            done=True,
            summary_text="Final",
            full_report={"locale": "fr"},
        )

        response = await client.get(f"/v1/audits/{audit.id}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        events = parse_sse(response.text)
        assert [name for name, _ in events] == ["completed"]
        assert events[0][1]["ready"] is True
        assert events[0][1]["fullReport"] == {"locale": "fr"}

    async def test_unknown_audit(self, client: AsyncClient) -> None:
        response = await client.get("/v1/audits/unknown/stream")

        events = parse_sse(response.text)
        assert events == [
            ("failed", {"auditId": "unknown", "status": None, "error": "Audit not found."})
        ]
