"""Per-page narratives: generative micro-audits with a heuristic fallback.

Pages are processed by a fixed pool of workers pulling from a shared
cursor. A circuit breaker stops generation for the rest of the batch once
enough attempts have failed, so a degraded backend only costs a bounded
number of timeouts.
"""

import asyncio
import json
import re
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from api.config import AuditAutomationConfig
from worker.crawler.inspector import PageSignals
from worker.guardrails import DeadlineBudget
from worker.llm.client import LLMClient
from worker.llm.models import PageRecapOutput
from worker.locale import localized

logger = structlog.get_logger(__name__)

Priority = Literal["high", "medium", "low"]

MAX_LIST_ITEMS = 6
TOP_RECURRING_ISSUES = 6

# Fallback scorer baselines
BASE_WORDING = 55
BASE_TRUST = 55
BASE_CTA = 50
BASE_SEO_COPY = 55

_FR_MARKERS = re.compile(r"(bonjour|votre|avec|pour|nous|vous|contactez)")
_EN_MARKERS = re.compile(r"(welcome|your|with|for|contact|book|about)")

SYSTEM_PROMPT = (
    "Tu realises un micro-audit de page complet (SEO + conversion + confiance + "
    "performance + hygiene technique). Reponds uniquement en francais. Tu dois evaluer: "
    "proposition de valeur, CTA et friction contact/mobile, fondations SEO "
    "(title/H1/meta/indexabilite/canonical), signaux de credibilite, hypotheses "
    "performance, et indices techniques (CMS/runtime visibles). Chaque topIssue et "
    "recommendation doit etre specifique et actionnable.",
    "You perform a full page micro-audit (SEO + conversion + trust + performance + "
    "technical hygiene). Respond only in English. Evaluate value proposition, "
    "CTA/contact/mobile friction, SEO foundations (title/H1/meta/indexability/canonical), "
    "trust signals, performance hypotheses, and visible CMS/runtime clues. Each topIssue "
    "and recommendation must be specific and actionable.",
)

STRICT_PROMPT = (
    "Contrainte stricte: aucune langue melangee, aucune speculation sans preuve. "
    "Si une donnee manque, ecris 'Non verifiable'.",
    "Strict rule: no mixed language and no unsupported speculation. "
    "If data is missing, write 'Not verifiable'.",
)

FORMAT_PROMPT = (
    "Reponds avec un objet JSON: summary, topIssues (max 6), recommendations (max 6), "
    "wordingScore, trustScore, ctaScore, seoCopyScore (0-100), priority "
    "(high|medium|low), language (fr|en|mixed|unknown).",
    "Answer with a JSON object: summary, topIssues (max 6), recommendations (max 6), "
    "wordingScore, trustScore, ctaScore, seoCopyScore (0-100), priority "
    "(high|medium|low), language (fr|en|mixed|unknown).",
)


@dataclass
class PageNarrative:
    """Micro-audit of one page."""

    url: str
    final_url: str | None
    priority: Priority
    language: str
    wording_score: int
    trust_score: int
    cta_score: int
    seo_copy_score: int
    summary: str
    top_issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    source: Literal["generated", "fallback"] = "fallback"

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "finalUrl": self.final_url,
            "priority": self.priority,
            "language": self.language,
            "wordingScore": self.wording_score,
            "trustScore": self.trust_score,
            "ctaScore": self.cta_score,
            "seoCopyScore": self.seo_copy_score,
            "summary": self.summary,
            "topIssues": self.top_issues,
            "recommendations": self.recommendations,
            "source": self.source,
        }


@dataclass
class NarrativeBatch:
    """Narratives in input order, batch summary and warnings."""

    narratives: list[PageNarrative]
    summary: dict[str, Any]
    warnings: list[str] = field(default_factory=list)


OnNarrativeReady = Callable[[PageNarrative, int, int], Awaitable[None]]


def clamp_score(value: float) -> int:
    return max(0, min(100, round(value)))


def _is_error_page(page: PageSignals) -> bool:
    status = page.status_code if page.status_code is not None else 500
    return bool(page.error) or status >= 400


def detect_page_language(page: PageSignals) -> str:
    """Language from html[lang], else from marker words in the copy."""
    lang = (page.html_lang or "").lower()
    if lang.startswith("fr"):
        return "fr"
    if lang.startswith("en"):
        return "en"

    corpus = f"{page.title or ''} {page.meta_description or ''} {page.text_excerpt}".lower()
    has_fr = bool(_FR_MARKERS.search(corpus))
    has_en = bool(_EN_MARKERS.search(corpus))
    if has_fr and has_en:
        return "mixed"
    if has_fr:
        return "fr"
    if has_en:
        return "en"
    return "unknown"


def _priority_from_scores(*scores: int) -> Priority:
    lowest = min(scores)
    if lowest < 45:
        return "high"
    if lowest < 65:
        return "medium"
    return "low"


def build_fallback_narrative(page: PageSignals, locale: str = "fr") -> PageNarrative:
    """
    Score a page deterministically from its inspected signals.

    Starts from fixed baselines and applies signed deltas for the same
    signals the findings engine inspects.
    """
    wording, trust, cta, seo_copy = BASE_WORDING, BASE_TRUST, BASE_CTA, BASE_SEO_COPY
    issues: list[str] = []
    recommendations: list[str] = []

    if not (page.title or "").strip():
        seo_copy -= 18
        issues.append(localized(locale, "Balise title manquante", "Missing title tag"))
        recommendations.append(
            localized(
                locale,
                "Definir un title unique oriente intention.",
                "Set a unique intent-aligned title.",
            )
        )
    if not (page.meta_description or "").strip():
        wording -= 10
        seo_copy -= 16
        issues.append(localized(locale, "Meta description absente", "Missing meta description"))
        recommendations.append(
            localized(
                locale,
                "Ajouter une meta persuasive avec proposition de valeur.",
                "Add a persuasive meta description with value proposition.",
            )
        )
    if page.h1_count != 1:
        wording -= 8
        seo_copy -= 10
        issues.append(localized(locale, "Structure H1 non conforme", "Incorrect H1 structure"))
        recommendations.append(
            localized(
                locale,
                "Conserver un seul H1 descriptif par page.",
                "Keep one descriptive H1 per page.",
            )
        )
    if page.word_count < 120:
        wording -= 12
        seo_copy -= 8
        issues.append(localized(locale, "Contenu trop faible", "Thin page content"))
        recommendations.append(
            localized(
                locale,
                "Renforcer le contenu pour couvrir l intention utilisateur.",
                "Expand the copy to fully cover user intent.",
            )
        )
    if not page.has_forms or not page.cta_hints:
        cta -= 14
        issues.append(
            localized(locale, "CTA peu visible ou absent", "CTA visibility is weak or missing")
        )
        recommendations.append(
            localized(
                locale,
                "Ajouter un CTA principal visible au-dessus de la ligne de flottaison.",
                "Add one visible primary CTA above the fold.",
            )
        )
    else:
        cta += 8
    if not page.has_structured_data:
        trust -= 10
        recommendations.append(
            localized(
                locale,
                "Ajouter des schemas Organization/LocalBusiness/FAQ selon le contexte.",
                "Add relevant Organization/LocalBusiness/FAQ schema.",
            )
        )
    else:
        trust += 8
    if page.open_graph_tag_count == 0:
        trust -= 6
    if not page.indexable or _is_error_page(page):
        seo_copy -= 20
        trust -= 10
        issues.append(
            localized(locale, "Page non indexable ou en erreur", "Page is non-indexable or in error")
        )
        recommendations.append(
            localized(
                locale,
                "Corriger status HTTP, directives robots et canonical.",
                "Fix HTTP status, robots directives, and canonical setup.",
            )
        )

    wording, trust, cta, seo_copy = (clamp_score(v) for v in (wording, trust, cta, seo_copy))

    return PageNarrative(
        url=page.url,
        final_url=page.final_url,
        priority=_priority_from_scores(wording, trust, cta, seo_copy),
        language=detect_page_language(page),
        wording_score=wording,
        trust_score=trust,
        cta_score=cta,
        seo_copy_score=seo_copy,
        summary=localized(
            locale,
            f"Analyse heuristique: clarté {wording}/100, confiance {trust}/100, "
            f"CTA {cta}/100, SEO éditorial {seo_copy}/100.",
            f"Heuristic recap: wording {wording}/100, trust {trust}/100, "
            f"CTA {cta}/100, SEO copy {seo_copy}/100.",
        ),
        top_issues=list(dict.fromkeys(issues))[:MAX_LIST_ITEMS],
        recommendations=list(dict.fromkeys(recommendations))[:MAX_LIST_ITEMS],
        source="fallback",
    )


def _clean_items(items: list[str]) -> list[str]:
    return [item.strip() for item in items if item.strip()][:MAX_LIST_ITEMS]


def build_page_payload(page: PageSignals) -> dict[str, Any]:
    """Page signals sent to the backend."""
    return {
        "url": page.url,
        "finalUrl": page.final_url,
        "statusCode": page.status_code,
        "indexable": page.indexable,
        "title": page.title,
        "metaDescription": page.meta_description,
        "h1Count": page.h1_count,
        "h1Texts": page.h1_texts,
        "htmlLang": page.html_lang,
        "wordCount": page.word_count,
        "textExcerpt": page.text_excerpt,
        "ctaHints": page.cta_hints,
        "hasStructuredData": page.has_structured_data,
        "openGraphTagCount": page.open_graph_tag_count,
        "hasForms": page.has_forms,
        "hasCookieBanner": page.has_cookie_banner,
        "canonical": page.canonical,
        "canonicalCount": page.canonical_count,
        "responseTimeMs": page.response_time_ms,
        "server": page.server,
        "xPoweredBy": page.x_powered_by,
        "setCookiePatterns": page.set_cookie_patterns,
        "cacheHeaders": page.cache_headers,
        "securityHeaders": page.security_headers,
        "detectedCmsHints": page.detected_cms_hints,
        "hasAnalytics": page.has_analytics,
        "hasTagManager": page.has_tag_manager,
        "hasPixel": page.has_pixel,
    }


def summarize_narratives(narratives: list[PageNarrative]) -> dict[str, Any]:
    """Totals, source split, priority counts, average scores and recurring issues."""
    total = len(narratives)
    priority_counts = {"high": 0, "medium": 0, "low": 0}
    issue_counts: Counter[str] = Counter()
    for narrative in narratives:
        priority_counts[narrative.priority] += 1
        issue_counts.update(issue.lower() for issue in narrative.top_issues)

    def _average(attr: str) -> int:
        if not total:
            return 0
        return clamp_score(sum(getattr(n, attr) for n in narratives) / total)

    generated = sum(1 for n in narratives if n.source == "generated")
    return {
        "totalPages": total,
        "generatedRecaps": generated,
        "fallbackRecaps": total - generated,
        "priorityCounts": priority_counts,
        "averageScores": {
            "wording": _average("wording_score"),
            "trust": _average("trust_score"),
            "cta": _average("cta_score"),
            "seoCopy": _average("seo_copy_score"),
        },
        "topRecurringIssues": [issue for issue, _ in issue_counts.most_common(TOP_RECURRING_ISSUES)],
    }


class PageNarrativeGenerator:
    """Produces one narrative per page with bounded concurrency."""

    def __init__(self, config: AuditAutomationConfig, llm: LLMClient):
        self.config = config
        self.llm = llm

    async def analyze_pages(
        self,
        pages: list[PageSignals],
        locale: str = "fr",
        on_ready: OnNarrativeReady | None = None,
        budget: DeadlineBudget | None = None,
    ) -> NarrativeBatch:
        """
        Build narratives for every page.

        Args:
            pages: Crawled pages, in the order results should be returned
            locale: Output language
            on_ready: Awaited after each page, in completion order
            budget: Optional deadline shared with the caller

        Returns:
            NarrativeBatch with narratives in input order
        """
        total = len(pages)
        if not total:
            return NarrativeBatch(narratives=[], summary=summarize_narratives([]))

        results: list[PageNarrative | None] = [None] * total
        warnings: list[str] = []
        cursor = 0
        done = 0
        attempts = 0
        failures = 0
        breaker_open = False

        def _maybe_open_breaker() -> None:
            nonlocal breaker_open
            if breaker_open or attempts < self.config.circuit_breaker_min_samples:
                return
            ratio = failures / max(1, attempts)
            if ratio < self.config.circuit_breaker_failure_ratio:
                return
            breaker_open = True
            warning = (
                f"Page AI circuit breaker opened (failures={failures}/{attempts}, "
                f"threshold={self.config.circuit_breaker_failure_ratio})."
            )
            warnings.append(warning)
            logger.warning(
                "page_ai_circuit_open",
                failures=failures,
                attempts=attempts,
                threshold=self.config.circuit_breaker_failure_ratio,
            )

        async def worker() -> None:
            nonlocal cursor, done, attempts, failures
            while cursor < total:
                index = cursor
                cursor += 1
                page = pages[index]

                if breaker_open or not self.llm.configured or _is_error_page(page):
                    narrative = build_fallback_narrative(page, locale)
                else:
                    narrative, warning = await self._generate(page, locale, budget)
                    attempts += 1
                    if narrative is None:
                        failures += 1
                        narrative = build_fallback_narrative(page, locale)
                    if warning:
                        warnings.append(warning)
                    _maybe_open_breaker()

                results[index] = narrative
                done += 1
                if narrative.source == "fallback":
                    warnings.append(f"Fallback recap used for {page.url}")
                if on_ready is not None:
                    await on_ready(narrative, done, total)

        concurrency = min(max(1, self.config.page_ai_concurrency), total)
        await asyncio.gather(*(worker() for _ in range(concurrency)))

        narratives = [n for n in results if n is not None]
        return NarrativeBatch(
            narratives=narratives,
            summary=summarize_narratives(narratives),
            warnings=warnings,
        )

    async def _generate(
        self,
        page: PageSignals,
        locale: str,
        budget: DeadlineBudget | None,
    ) -> tuple[PageNarrative | None, str | None]:
        messages = [
            {"role": "system", "content": localized(locale, *SYSTEM_PROMPT)},
            {"role": "system", "content": localized(locale, *STRICT_PROMPT)},
            {"role": "system", "content": localized(locale, *FORMAT_PROMPT)},
            {"role": "user", "content": json.dumps(build_page_payload(page), ensure_ascii=False)},
        ]
        result = await self.llm.generate_json(
            "page_recap",
            messages,
            PageRecapOutput,
            timeout_ms=self.config.page_ai_timeout_ms,
            retries=0,
            budget=budget,
        )
        if not result.ok or result.value is None:
            if result.timed_out:
                return None, f"Page AI timeout fallback for {page.url}"
            return None, f"Page AI failure fallback for {page.url}: {result.error}"

        output = result.value
        return (
            PageNarrative(
                url=page.url,
                final_url=page.final_url,
                priority=output.priority,
                language=output.language,
                wording_score=clamp_score(output.wording_score),
                trust_score=clamp_score(output.trust_score),
                cta_score=clamp_score(output.cta_score),
                seo_copy_score=clamp_score(output.seo_copy_score),
                summary=output.summary.strip(),
                top_issues=_clean_items(output.top_issues),
                recommendations=_clean_items(output.recommendations),
                source="generated",
            ),
            None,
        )
