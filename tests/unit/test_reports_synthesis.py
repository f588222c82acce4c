"""Tests for report synthesis."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from api.config import AuditAutomationConfig
from tests.fixtures.reports import english_report
from worker.llm.client import GenerationResult, LLMError
from worker.llm.models import ExpertReportOutput, UserSummaryOutput
from worker.reports.synthesis import (
    ReportSynthesizer,
    SynthesisInput,
    build_fallback_summary,
    sum_hours,
)


def synthesis_input(**overrides) -> SynthesisInput:
    fields = dict(
        locale="en",
        website_name="Example",
        normalized_url="https://example.com/",
        quick_wins=["Add a meta description", "Add an H1"],
        pillar_scores={"seo": 70, "performance": 80},
    )
    fields.update(overrides)
    return SynthesisInput(**fields)


def scripted_llm(results: dict[str, GenerationResult]) -> MagicMock:
    """Fake client answering by purpose; records the purposes in call order."""
    llm = MagicMock()
    llm.configured = True
    llm.purposes = []

    async def generate_json(purpose, messages, schema, timeout_ms, retries=None, budget=None):
        llm.purposes.append(purpose)
        return results[purpose]

    llm.generate_json = AsyncMock(side_effect=generate_json)
    return llm


SUMMARY_OK = GenerationResult(
    ok=True,
    value=UserSummaryOutput(summary_text="The audit of your website is ready with the fixes."),
)


class TestHelpers:
    """Tests for the synthesis helpers."""

    def test_sum_hours_ignores_invalid_values(self) -> None:
        assert sum_hours([1.25, 2, None, "3", True, -4, float("inf")]) == 3.2

    def test_fallback_summary_mentions_url(self) -> None:
        assert "https://example.com/" in build_fallback_summary(synthesis_input())
        assert "https://example.com/" in build_fallback_summary(synthesis_input(locale="fr"))


class TestReportSynthesizer:
    """Tests for ReportSynthesizer.generate."""

    async def test_unconfigured_backend_uses_fallback(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        llm = MagicMock()
        llm.configured = False
        sections: list[tuple[str, int, int]] = []

        async def on_section(section: str, done: int, total: int) -> None:
            sections.append((section, done, total))

        result = await ReportSynthesizer(audit_config, llm).generate(
            synthesis_input(), on_section=on_section
        )

        assert "https://example.com/" in result.summary_text
        assert result.report["qualityGate"]["fallback"] is True
        assert result.report["warning"] == "LLM fallback used"
        assert [done for _, done, _ in sections] == [1, 2, 3, 4, 5]
        assert sections[-1] == ("client_communications", 5, 5)
        # Invoice scope mirrors the todo phases: 2h + 3h
        cost = result.report["costEstimate"]
        assert cost["totalEstimatedHours"] == 5
        assert cost["estimatedCostMin"] == 5 * audit_config.hourly_rate_min
        assert cost["estimatedCostMax"] == 5 * audit_config.hourly_rate_max
        assert cost["currency"] == "EUR"

    async def test_valid_compact_report(self, audit_config: AuditAutomationConfig) -> None:
        config = replace(audit_config, llm_api_key="sk-test")
        llm = scripted_llm(
            {
                "summary": SUMMARY_OK,
                "expert_compact": GenerationResult(
                    ok=True, value=ExpertReportOutput.model_validate(english_report())
                ),
            }
        )

        result = await ReportSynthesizer(config, llm).generate(synthesis_input())

        assert llm.purposes == ["summary", "expert_compact"]
        assert result.summary_text == "The audit of your website is ready with the fixes."
        assert result.report["qualityGate"] == {
            "valid": True,
            "reasons": [],
            "retried": False,
            "fallback": False,
        }
        assert "qualityWarning" not in result.report
        assert "summaryWarning" not in result.report

    async def test_rejected_compact_report_retries_full_pass(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        config = replace(audit_config, llm_api_key="sk-test")
        llm = scripted_llm(
            {
                "summary": SUMMARY_OK,
                "expert_compact": GenerationResult(ok=True, value=ExpertReportOutput()),
                "expert_full": GenerationResult(
                    ok=True, value=ExpertReportOutput.model_validate(english_report())
                ),
            }
        )

        result = await ReportSynthesizer(config, llm).generate(synthesis_input())

        assert llm.purposes == ["summary", "expert_compact", "expert_full"]
        assert result.report["qualityGate"]["retried"] is True
        assert result.report["qualityGate"]["valid"] is True

    async def test_failed_generations_degrade(self, audit_config: AuditAutomationConfig) -> None:
        config = replace(audit_config, llm_api_key="sk-test")
        failure = GenerationResult(ok=False, error=LLMError("timeout", "slow"))
        llm = scripted_llm({"summary": failure, "expert_compact": failure})

        result = await ReportSynthesizer(config, llm).generate(synthesis_input())

        assert llm.purposes == ["summary", "expert_compact"]
        assert result.report["qualityGate"]["fallback"] is True
        assert result.report["summaryWarning"] == (
            "LLM user summary failed. Deterministic summary used."
        )
        assert "https://example.com/" in result.summary_text

    async def test_rejected_summary_is_regenerated_strictly(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        config = replace(audit_config, llm_api_key="sk-test")
        report = GenerationResult(ok=True, value=ExpertReportOutput.model_validate(english_report()))
        llm = scripted_llm(
            {
                "summary": GenerationResult(ok=True, value=UserSummaryOutput(summary_text="   ")),
                "expert_compact": report,
                "summary_strict": SUMMARY_OK,
                "expert_full": report,
            }
        )

        result = await ReportSynthesizer(config, llm).generate(synthesis_input())

        assert llm.purposes == ["summary", "expert_compact", "summary_strict", "expert_full"]
        assert result.summary_text == "The audit of your website is ready with the fixes."
        assert result.report["qualityGate"]["retried"] is True
        assert result.report["qualityGate"]["valid"] is True

    def test_strict_instructions_only_on_retry(self, audit_config: AuditAutomationConfig) -> None:
        synthesizer = ReportSynthesizer(audit_config, MagicMock())
        data = synthesis_input()

        def system_text(messages: list[dict[str, str]]) -> str:
            return " ".join(m["content"] for m in messages if m["role"] == "system")

        compact = system_text(synthesizer._expert_messages(data, retry_mode=False, compact_mode=True))
        full = system_text(synthesizer._expert_messages(data, retry_mode=True, compact_mode=False))
        summary = system_text(synthesizer._summary_messages(data, retry_mode=False))
        strict_summary = system_text(synthesizer._summary_messages(data, retry_mode=True))

        assert "Additional strict rule" not in compact
        assert "Compact mode" in compact
        assert "Additional strict rule" in full
        assert "Compact mode" not in full
        assert "Additional strict rule" not in summary
        assert "Additional strict rule" in strict_summary
