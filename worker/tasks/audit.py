"""Audit pipeline background task."""

import asyncio
import time
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import httpx
import structlog

from api.config import AuditAutomationConfig, get_settings
from api.logging import bind_audit_context, unbind_audit_context
from api.metrics import record_audit_run, record_pages_analyzed
from api.models import ProcessingStatus
from api.services.audit_repository import (
    AuditRepository,
    AuditSnapshot,
    SqlAlchemyAuditRepository,
)
from api.services.mailer import AuditMailer
from worker.analysis.findings import analyze_pages, infer_tech_fingerprint
from worker.crawler.fetcher import SafeFetcher
from worker.crawler.inspector import PageInspector, PageSignals
from worker.crawler.sitemap import SitemapDiscovery, pick_url_sample
from worker.crawler.url import normalize_audit_url, select_urls_for_locale
from worker.guardrails import DeadlineBudget, InFlightLimiter
from worker.llm.client import LLMClient
from worker.locale import resolve_audit_locale
from worker.reports.narratives import PageNarrative, PageNarrativeGenerator
from worker.reports.synthesis import ReportSynthesizer, SynthesisInput
from worker.scoring.pillars import compute_scores
from worker.tasks.progress import ProgressWriteQueue, RecentUrls, interpolate

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 280
MAX_QUICK_WINS = 12
INSTANT_QUICK_WINS = 3

# Progress checkpoints (percent)
PROGRESS_NORMALIZED = 10
PROGRESS_BASELINE = 20
PROGRESS_CRAWLED = 60
PROGRESS_NARRATIVES = 85
PROGRESS_SYNTHESIZED = 95
PROGRESS_DONE = 100

STEP_LABELS: dict[str, tuple[str, str]] = {
    "normalize": ("Normalisation URL", "URL normalization"),
    "homepage": ("Analyse de la page d'accueil", "Homepage analysis"),
    "baseline": ("Baseline homepage terminee", "Homepage baseline ready"),
    "sitemap": ("Analyse sitemap", "Sitemap analysis"),
    "pages": ("Analyse des pages ({done}/{total})", "Page analysis ({done}/{total})"),
    "heuristics": ("Analyse heuristique", "Heuristic analysis"),
    "narratives": ("Recaps IA des pages ({done}/{total})", "AI page recaps ({done}/{total})"),
    "synthesis": ("Synthese du rapport: {section}", "Report synthesis: {section}"),
    "finalize": ("Preparation du rapport final", "Preparing final report"),
    "completed": ("Audit termine", "Audit completed"),
    "failed": ("Audit en echec", "Audit failed"),
}

SECTION_LABELS: dict[str, tuple[str, str]] = {
    "summary": ("resume", "summary"),
    "executive": ("synthese executive", "executive summary"),
    "priorities": ("priorites", "priorities"),
    "execution_plan": ("plan d'execution", "execution plan"),
    "client_communications": ("communication client", "client communications"),
}


def step_label(key: str, locale: str, **values: Any) -> str:
    fr, en = STEP_LABELS[key]
    return (en if locale == "en" else fr).format(**values)


def to_safe_error(error: BaseException) -> str:
    """Bounded error message suitable for persistence and clients."""
    message = str(error) or type(error).__name__ or "Unexpected audit error"
    if len(message) > MAX_ERROR_LENGTH:
        return f"{message[:MAX_ERROR_LENGTH]}..."
    return message


def build_instant_summary(
    homepage: PageSignals,
    pillar_scores: dict[str, int],
    quick_wins: list[str],
    locale: str,
) -> str:
    """Draft summary persisted right after the homepage baseline."""
    top_scores = ", ".join(
        f"{pillar}: {score}/100"
        for pillar, score in sorted(pillar_scores.items(), key=lambda item: item[1], reverse=True)[:2]
    )
    if locale == "en":
        actions = " ".join(quick_wins) if quick_wins else "No critical immediate action."
        return (
            f"First diagnosis available. Your homepage responds in {homepage.total_response_ms}ms "
            f"with HTTP status {homepage.status_code}. Initial scores: {top_scores}. "
            f"Immediate priority actions: {actions}"
        )
    actions = " ".join(quick_wins) if quick_wins else "Aucune action critique immédiate."
    return (
        "Premier diagnostic disponible. Votre page d'accueil répond en "
        f"{homepage.total_response_ms}ms avec un statut HTTP {homepage.status_code}. "
        f"Les premiers scores montrent: {top_scores}. "
        f"Actions prioritaires immédiates: {actions}"
    )


@lru_cache
def get_llm_limiter() -> InFlightLimiter:
    """Process-wide limiter for generative backend calls."""
    return InFlightLimiter(get_settings().llm_inflight_max)


class AuditPipeline:
    """Runs one audit from URL normalization to the persisted report.

    Phases are sequential. Crawling and page narratives run bounded
    worker pools internally and report progress through monotonic write
    queues. Any exception marks the audit FAILED; nothing propagates out
    of ``run``.
    """

    def __init__(
        self,
        repository: AuditRepository,
        config: AuditAutomationConfig,
        limiter: InFlightLimiter,
        mailer: AuditMailer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        llm_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.repository = repository
        self.config = config
        self.mailer = mailer
        fetcher = SafeFetcher(config, transport=transport)
        self.inspector = PageInspector(config, fetcher)
        self.sitemaps = SitemapDiscovery(config, fetcher)
        llm = LLMClient(config, limiter, transport=llm_transport)
        self.narratives = PageNarrativeGenerator(config, llm)
        self.synthesizer = ReportSynthesizer(config, llm)
        self._background: set[asyncio.Task[Any]] = set()

    async def run(self, audit_id: str) -> None:
        """Execute the audit and persist its terminal state."""
        audit = await self.repository.find_by_id(audit_id)
        if audit is None:
            logger.warning("audit_not_found", audit_id=audit_id)
            return

        bind_audit_context(audit_id)
        try:
            await self._execute(audit_id, audit)
        finally:
            unbind_audit_context()

    async def _execute(self, audit_id: str, audit: AuditSnapshot) -> None:
        locale = resolve_audit_locale(
            audit.locale, resolve_audit_locale(self.config.llm_language)
        )
        budget = DeadlineBudget(self.config.job_timeout_ms)
        started = time.perf_counter()

        async def update(**fields: Any) -> None:
            await self.repository.update_state(audit_id, **fields)

        logger.info("audit_started", website=audit.website_name, locale=locale)

        try:
            # =========================================================
            # Step 1: Normalize and guard the target
            # =========================================================
            await update(
                processing_status=ProcessingStatus.RUNNING.value,
                progress=PROGRESS_NORMALIZED,
                step=step_label("normalize", locale),
                error=None,
                started_at=datetime.now(UTC),
            )
            normalized_url, hostname = await normalize_audit_url(audit.website_name)
            await update(normalized_url=normalized_url, step=step_label("homepage", locale))

            # =========================================================
            # Step 2: Homepage baseline
            # =========================================================
            homepage = await self.inspector.inspect_homepage(normalized_url, budget=budget)
            homepage_url = homepage.final_url or normalized_url
            baseline = compute_scores(homepage, [], [], locale)
            instant_quick_wins = baseline.quick_wins[:INSTANT_QUICK_WINS]
            instant_summary = build_instant_summary(
                homepage, baseline.pillar_scores, instant_quick_wins, locale
            )
            await update(
                progress=PROGRESS_BASELINE,
                step=step_label("baseline", locale),
                final_url=homepage_url,
                redirect_chain=homepage.redirect_chain,
                summary_text=instant_summary,
                quick_wins=instant_quick_wins,
                pillar_scores=baseline.pillar_scores,
                key_checks={
                    **baseline.key_checks,
                    "firstRender": {"ready": True, "generatedAt": datetime.now(UTC).isoformat()},
                },
            )
            logger.info(
                "audit_baseline_ready",
                hostname=hostname,
                status_code=homepage.status_code,
                pillar_scores=baseline.pillar_scores,
            )

            # =========================================================
            # Step 3: Sitemap discovery and URL selection
            # =========================================================
            await update(step=step_label("sitemap", locale))
            sitemap = await self.sitemaps.discover(homepage_url, budget=budget)
            candidate_urls = list(
                dict.fromkeys([*sitemap.urls, *homepage.internal_links, homepage_url])
            )
            selected_urls = select_urls_for_locale(
                candidate_urls, homepage_url, locale, self.config.sitemap_analyze_limit
            )
            sample_urls = pick_url_sample(
                selected_urls,
                self.config.sitemap_sample_size,
                self.config.sitemap_analyze_limit,
            )["sample"]
            logger.info(
                "audit_urls_selected",
                sitemaps=len(sitemap.sitemap_urls),
                discovered=len(sitemap.urls),
                candidates=len(candidate_urls),
                selected=len(selected_urls),
            )

            # =========================================================
            # Step 4: Crawl selected URLs
            # =========================================================
            crawl_queue = ProgressWriteQueue(lambda fields: update(**fields), phase="pages")
            recent = RecentUrls()
            crawl_key_checks = {**baseline.key_checks}

            async def on_url_analyzed(page: PageSignals, done: int, total: int) -> None:
                recent_urls = recent.push(page.url)
                await crawl_queue.submit(
                    done,
                    {
                        "progress": interpolate(done, total, PROGRESS_BASELINE, PROGRESS_CRAWLED),
                        "step": step_label("pages", locale, done=done, total=total),
                        "key_checks": {
                            **crawl_key_checks,
                            "progressDetails": {
                                "phase": "technical_pages",
                                "iaTask": "technical_scan",
                                "currentUrl": page.url,
                                "recentUrls": recent_urls,
                                "done": done,
                                "total": total,
                            },
                        },
                    },
                )

            pages = await self.inspector.analyze_urls(
                selected_urls, on_url_analyzed=on_url_analyzed, budget=budget
            )
            record_pages_analyzed(len(pages))

            # =========================================================
            # Step 5: Findings, scoring and page narratives
            # =========================================================
            await update(progress=PROGRESS_CRAWLED, step=step_label("heuristics", locale))
            findings = analyze_pages(pages, locale)
            scoring = compute_scores(homepage, sitemap.sitemap_urls, pages, locale)
            tech_fingerprint = infer_tech_fingerprint(homepage, pages, locale)
            quick_wins = list(
                dict.fromkeys(
                    [*scoring.quick_wins, *(f.recommendation for f in findings.findings)]
                )
            )[:MAX_QUICK_WINS]
            key_checks = {
                **scoring.key_checks,
                "deepUrlAnalysis": findings.metrics,
                "techFingerprint": tech_fingerprint,
                "crawlCoverage": {
                    "sitemapUrls": len(sitemap.urls),
                    "internalLinks": len(homepage.internal_links),
                    "candidateUrls": len(candidate_urls),
                    "sampledUrls": len(sample_urls),
                    "analyzedUrls": len(pages),
                },
            }
            await update(
                key_checks=key_checks,
                quick_wins=quick_wins,
                pillar_scores=scoring.pillar_scores,
            )

            narrative_queue = ProgressWriteQueue(
                lambda fields: update(**fields), phase="narratives"
            )

            async def on_narrative(narrative: PageNarrative, done: int, total: int) -> None:
                await narrative_queue.submit(
                    done,
                    {
                        "progress": interpolate(done, total, PROGRESS_CRAWLED, PROGRESS_NARRATIVES),
                        "step": step_label("narratives", locale, done=done, total=total),
                    },
                )

            narrative_batch = await self.narratives.analyze_pages(
                pages[: self.config.page_analyze_limit],
                locale,
                on_ready=on_narrative,
                budget=budget,
            )

            # =========================================================
            # Step 6: Report synthesis
            # =========================================================
            synthesis_queue = ProgressWriteQueue(
                lambda fields: update(**fields), phase="synthesis"
            )

            async def on_section(section: str, done: int, total: int) -> None:
                fr, en = SECTION_LABELS.get(section, (section, section))
                await synthesis_queue.submit(
                    done,
                    {
                        "progress": interpolate(
                            done, total, PROGRESS_NARRATIVES, PROGRESS_SYNTHESIZED
                        ),
                        "step": step_label(
                            "synthesis", locale, section=en if locale == "en" else fr
                        ),
                    },
                )

            synthesis = await self.synthesizer.generate(
                SynthesisInput(
                    locale=locale,
                    website_name=audit.website_name,
                    normalized_url=normalized_url,
                    key_checks=key_checks,
                    quick_wins=quick_wins,
                    pillar_scores=scoring.pillar_scores,
                    findings=findings.findings,
                    sampled_pages=pages,
                    narratives=narrative_batch.narratives,
                    page_summary=narrative_batch.summary,
                    tech_fingerprint=tech_fingerprint,
                ),
                on_section=on_section,
                budget=budget,
            )

            # =========================================================
            # Step 7: Assemble and persist
            # =========================================================
            await update(progress=PROGRESS_SYNTHESIZED, step=step_label("finalize", locale))
            sample_set = set(sample_urls)
            full_report = {
                "generatedAt": datetime.now(UTC).isoformat(),
                "locale": locale,
                "instantSummary": instant_summary,
                "homepage": homepage.to_dict(),
                "sitemap": {
                    "sitemapUrls": sitemap.sitemap_urls,
                    "totalUrlsDiscovered": len(sitemap.urls),
                    "candidateUrls": len(candidate_urls),
                    "sampledUrls": [p.to_dict() for p in pages if p.url in sample_set],
                    "deepUrlAnalysis": [p.to_dict() for p in pages],
                },
                "findings": [f.to_dict() for f in findings.findings],
                "deepMetrics": findings.metrics,
                "techFingerprint": tech_fingerprint,
                "scoring": scoring.to_dict(),
                "pageRecaps": [n.to_dict() for n in narrative_batch.narratives],
                "pageRecapSummary": narrative_batch.summary,
                "pageRecapWarnings": narrative_batch.warnings,
                "llm": synthesis.report,
            }
            await update(
                processing_status=ProcessingStatus.COMPLETED.value,
                progress=PROGRESS_DONE,
                step=step_label("completed", locale),
                done=True,
                summary_text=synthesis.summary_text,
                full_report=full_report,
                finished_at=datetime.now(UTC),
            )

            duration = time.perf_counter() - started
            record_audit_run("completed", duration)
            logger.info(
                "audit_completed",
                duration_seconds=round(duration, 2),
                pages=len(pages),
                findings=len(findings.findings),
                quality_gate=synthesis.report.get("qualityGate"),
            )

            if self.mailer is not None:
                self._spawn(
                    self.mailer.send_audit_report_notification(
                        audit_id=audit_id,
                        website_name=audit.website_name,
                        contact_method=audit.contact_method,
                        contact_value=audit.contact_value,
                        locale=locale,
                        summary_text=synthesis.summary_text,
                        full_report=full_report,
                    ),
                    name=f"audit-report-email-{audit_id}",
                )

        except Exception as e:
            duration = time.perf_counter() - started
            logger.exception("audit_failed", error=str(e), duration_seconds=round(duration, 2))
            record_audit_run("failed", duration)
            try:
                await update(
                    processing_status=ProcessingStatus.FAILED.value,
                    progress=PROGRESS_DONE,
                    step=step_label("failed", locale),
                    done=False,
                    error=to_safe_error(e),
                    finished_at=datetime.now(UTC),
                )
            except Exception as persist_error:
                logger.error("audit_failure_not_persisted", error=str(persist_error))

    def _spawn(self, coro: Any, name: str) -> None:
        """Run a side task without awaiting it; its failure is only logged."""
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.warning("background_task_failed", task=task.get_name(), error=str(error))

    async def drain(self, timeout: float = 15.0) -> None:
        """Wait for pending side tasks, e.g. before the event loop closes."""
        if not self._background:
            return
        _, pending = await asyncio.wait(set(self._background), timeout=timeout)
        for task in pending:
            task.cancel()


async def run_audit(
    audit_id: str,
    repository: AuditRepository | None = None,
    limiter: InFlightLimiter | None = None,
) -> dict:
    """
    Execute an audit run inside the current event loop.

    Args:
        audit_id: Audit request ID
        repository: Storage (defaults to PostgreSQL)
        limiter: Generative backend limiter (defaults to the process one)

    Returns:
        Dict with the terminal status
    """
    settings = get_settings()
    repository = repository or SqlAlchemyAuditRepository()
    pipeline = AuditPipeline(
        repository,
        settings.audit_config(),
        limiter or get_llm_limiter(),
        mailer=AuditMailer(settings),
    )
    await pipeline.run(audit_id)
    await pipeline.drain()

    audit = await repository.find_by_id(audit_id)
    return {
        "audit_id": audit_id,
        "status": audit.processing_status if audit else None,
        "progress": audit.progress if audit else None,
    }


def run_audit_job(audit_id: str) -> dict:
    """
    Synchronous entry point for RQ.

    Database connections are reset so the new event loop gets fresh
    ones (required for SimpleWorker on Windows).
    """
    from api.database import reset_engine

    reset_engine()
    return asyncio.run(run_audit(audit_id))
