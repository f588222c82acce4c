"""Tests for per-page narratives and the page circuit breaker."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

from api.config import AuditAutomationConfig
from worker.crawler.inspector import PageSignals
from worker.llm.client import GenerationResult, LLMError
from worker.llm.models import PageRecapOutput
from worker.reports.narratives import (
    PageNarrativeGenerator,
    build_fallback_narrative,
    detect_page_language,
)


def make_page(index: int, **overrides) -> PageSignals:
    fields = dict(
        url=f"https://example.com/page-{index}",
        final_url=f"https://example.com/page-{index}",
        status_code=200,
        indexable=True,
        title=f"Page {index}",
        meta_description="Une description claire pour votre page de services.",
        h1_count=1,
        html_lang="fr",
        word_count=400,
    )
    fields.update(overrides)
    return PageSignals(**fields)


def fake_llm(result: GenerationResult, configured: bool = True) -> MagicMock:
    llm = MagicMock()
    llm.configured = configured
    llm.generate_json = AsyncMock(return_value=result)
    return llm


def recap(**overrides) -> PageRecapOutput:
    fields = dict(
        summary=" Page claire. ",
        top_issues=["CTA faible", " "],
        recommendations=["Ajouter un CTA"],
        wording_score=99.6,
        trust_score=70,
        cta_score=40,
        seo_copy_score=65,
        priority="high",
        language="fr",
    )
    fields.update(overrides)
    return PageRecapOutput(**fields)


class TestDetectPageLanguage:
    """Tests for detect_page_language."""

    def test_from_lang_attribute(self) -> None:
        assert detect_page_language(make_page(1, html_lang="en-GB")) == "en"

    def test_from_copy(self) -> None:
        page = make_page(1, html_lang=None, title="Bonjour", meta_description="", text_excerpt="")
        assert detect_page_language(page) == "fr"

    def test_unknown(self) -> None:
        page = make_page(1, html_lang=None, title="", meta_description="", text_excerpt="")
        assert detect_page_language(page) == "unknown"


class TestFallbackNarrative:
    """Tests for build_fallback_narrative."""

    def test_scores_in_range(self) -> None:
        narrative = build_fallback_narrative(make_page(1))

        assert narrative.source == "fallback"
        for score in (
            narrative.wording_score,
            narrative.trust_score,
            narrative.cta_score,
            narrative.seo_copy_score,
        ):
            assert 0 <= score <= 100
        assert narrative.priority in ("high", "medium", "low")


class TestPageNarrativeGenerator:
    """Tests for PageNarrativeGenerator.analyze_pages."""

    async def test_empty_input(self, audit_config: AuditAutomationConfig) -> None:
        generator = PageNarrativeGenerator(audit_config, fake_llm(GenerationResult(ok=False)))

        batch = await generator.analyze_pages([])

        assert batch.narratives == []

    async def test_unconfigured_uses_fallbacks(self, audit_config: AuditAutomationConfig) -> None:
        llm = fake_llm(GenerationResult(ok=False), configured=False)
        generator = PageNarrativeGenerator(audit_config, llm)
        pages = [make_page(i) for i in range(3)]
        progress: list[int] = []

        async def on_ready(narrative, done: int, total: int) -> None:
            progress.append(done)

        batch = await generator.analyze_pages(pages, on_ready=on_ready)

        assert [n.url for n in batch.narratives] == [p.url for p in pages]
        assert all(n.source == "fallback" for n in batch.narratives)
        assert progress == [1, 2, 3]
        llm.generate_json.assert_not_awaited()

    async def test_generated_narratives_keep_input_order(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        llm = fake_llm(GenerationResult(ok=True, value=recap()))
        generator = PageNarrativeGenerator(audit_config, llm)
        pages = [make_page(i) for i in range(4)]

        batch = await generator.analyze_pages(pages)

        assert [n.url for n in batch.narratives] == [p.url for p in pages]
        first = batch.narratives[0]
        assert first.source == "generated"
        assert first.wording_score == 100
        assert first.summary == "Page claire."
        assert first.top_issues == ["CTA faible"]
        assert batch.warnings == []

    async def test_error_pages_skip_generation(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        llm = fake_llm(GenerationResult(ok=True, value=recap()))
        generator = PageNarrativeGenerator(audit_config, llm)

        batch = await generator.analyze_pages([make_page(1, status_code=404)])

        assert batch.narratives[0].source == "fallback"
        llm.generate_json.assert_not_awaited()

    async def test_circuit_breaker_opens(self, audit_config: AuditAutomationConfig) -> None:
        config = replace(audit_config, page_ai_concurrency=1)
        llm = fake_llm(GenerationResult(ok=False, error=LLMError("api_error", "boom")))
        generator = PageNarrativeGenerator(config, llm)
        pages = [make_page(i) for i in range(5)]

        batch = await generator.analyze_pages(pages)

        assert llm.generate_json.await_count == 2
        assert len(batch.narratives) == 5
        assert all(n.source == "fallback" for n in batch.narratives)
        assert sum("circuit breaker opened" in w for w in batch.warnings) == 1

    async def test_circuit_breaker_warns_once_with_parallel_workers(
        self, audit_config: AuditAutomationConfig
    ) -> None:
        config = replace(audit_config, page_ai_concurrency=3)
        llm = fake_llm(GenerationResult(ok=False, error=LLMError("api_error", "boom")))
        generator = PageNarrativeGenerator(config, llm)

        batch = await generator.analyze_pages([make_page(i) for i in range(8)])

        assert llm.generate_json.await_count < 8
        assert sum("circuit breaker opened" in w for w in batch.warnings) == 1

    async def test_timeout_warning(self, audit_config: AuditAutomationConfig) -> None:
        llm = fake_llm(GenerationResult(ok=False, error=LLMError("timeout", "slow")))
        generator = PageNarrativeGenerator(audit_config, llm)

        batch = await generator.analyze_pages([make_page(1)])

        assert batch.narratives[0].source == "fallback"
        assert any("timeout fallback" in w for w in batch.warnings)
