"""Report synthesis: client summary and expert report.

A compact expert pass runs first and goes through the quality gate. When
the gate rejects it, a full pass with stricter instructions is attempted
and re-gated; the summary is regenerated too when the gate blames it. Whatever the
backend does, the result is a structurally complete report: failures are
replaced by deterministic fallbacks built from the audit data.
"""

import json
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from api.config import AuditAutomationConfig
from worker.analysis.findings import SEVERITY_RANK, Finding
from worker.crawler.inspector import PageSignals
from worker.guardrails import DeadlineBudget
from worker.llm.client import LLMClient
from worker.llm.models import ExpertReportOutput, UserSummaryOutput
from worker.locale import localized
from worker.reports.narratives import PageNarrative
from worker.reports.quality_gate import (
    QualityGateContext,
    QualityGateResult,
    ReportQualityGate,
)

logger = structlog.get_logger(__name__)

SECTIONS = ("summary", "executive", "priorities", "execution_plan", "client_communications")

MIN_PRIORITY_DEPTH = 8
MAX_PRIORITY_DEPTH = 12

# profile -> (quick wins, findings, affected urls per finding, sampled urls, page recaps)
PAYLOAD_CAPS: dict[str, tuple[int, int, int, int, int]] = {
    "summary": (6, 6, 4, 12, 12),
    "expert": (10, 10, 5, 12, 12),
    "expert_compact": (8, 6, 4, 8, 8),
}

SUMMARY_PROMPT = (
    "Tu rediges un resume client humain et utile pour un decideur non technique. "
    "Reponds uniquement en francais. Ton professionnel, concret, et sans melange de "
    "langue. Structure: contexte, blocages, impacts business, priorites immediates. "
    "N'invente aucune donnee. Si une information manque, indique 'Non verifiable'. "
    "Reponds avec un objet JSON {\"summaryText\": string}.",
    "Write a human, business-first client summary for a non-technical stakeholder. "
    "Respond only in English with no language mixing. Keep it factual and "
    "implementation-oriented. Structure: context, blockers, business impact, immediate "
    "priorities. If data is missing, state: Not verifiable. "
    "Answer with a JSON object {\"summaryText\": string}.",
)

# Gate reasons that also send the summary through the strict retry
SUMMARY_RETRY_REASONS = frozenset({"missing_summary_text", "language_mismatch_detected"})

SUMMARY_STRICT_PROMPT = (
    "Contrainte stricte supplementaire: aucun melange de langue, aucune phrase vide, "
    "et seulement des recommandations exploitables.",
    "Additional strict rule: no mixed language, no empty sentences, and only "
    "actionable recommendations.",
)

EXPERT_PROMPT = (
    "Tu es un expert SEO technique, engineering web senior et PM delivery. Reponds "
    "uniquement en francais, ton technique et oriente execution. Fournis un rapport "
    "operationnel: causes racines, remediation precise, dependances, criteres "
    "d'acceptation, plan d'execution. Tu dois produire entre 8 et 10 priorites "
    "(high/medium/low) avec effort estime. Utilise uniquement les donnees disponibles. "
    "Si un point n'est pas verifiable, ecris 'Non verifiable'.",
    "You are a senior technical SEO, web engineering, and delivery PM expert. Respond "
    "only in English in a technical execution-oriented tone. Produce an "
    "implementation-ready report: root causes, concrete remediations, dependencies, "
    "acceptance criteria, and execution sequencing. You must provide between 8 and 10 "
    "prioritized actions (high/medium/low) with estimated effort. Use only provided "
    "data. If a point cannot be verified, write: Not verifiable.",
)

EXPERT_LIMITS_PROMPT = (
    "Contrainte stricte: sortie concise. Limites visees: urlLevelImprovements max 8, "
    "implementationTodo max 8, whatToFixThisWeek max 5, whatToFixThisMonth max 6, "
    "fastImplementationPlan max 5, implementationBacklog max 10, invoiceScope max 10. "
    "Evite les phrases longues et la redondance.",
    "Strict constraint: concise output. Target limits: urlLevelImprovements up to 8, "
    "implementationTodo up to 8, whatToFixThisWeek up to 5, whatToFixThisMonth up to 6, "
    "fastImplementationPlan up to 5, implementationBacklog up to 10, invoiceScope up to "
    "10. Avoid long sentences and redundancy.",
)

EXPERT_COMPACT_PROMPT = (
    "Mode compact: privilegie les actions a plus fort impact et reduis les details "
    "non essentiels.",
    "Compact mode: prioritize highest-impact actions and trim non-essential details.",
)

EXPERT_STRICT_PROMPT = (
    "Contrainte stricte supplementaire: minimum 8 priorites uniques, champs non vides, "
    "aucune duplication, et langue unique.",
    "Additional strict rule: minimum 8 unique priorities, non-empty fields, no "
    "duplicates, and single-language output.",
)

EXPERT_FORMAT_PROMPT = (
    "Reponds avec un objet JSON: executiveSummary, reportExplanation, strengths, "
    "diagnosticChapters, techFingerprint, priorities, urlLevelImprovements, "
    "implementationTodo, whatToFixThisWeek, whatToFixThisMonth, clientMessageTemplate, "
    "clientLongEmail, fastImplementationPlan, implementationBacklog, invoiceScope.",
    "Answer with a JSON object: executiveSummary, reportExplanation, strengths, "
    "diagnosticChapters, techFingerprint, priorities, urlLevelImprovements, "
    "implementationTodo, whatToFixThisWeek, whatToFixThisMonth, clientMessageTemplate, "
    "clientLongEmail, fastImplementationPlan, implementationBacklog, invoiceScope.",
)

OnSection = Callable[[str, int, int], Awaitable[None]]


@dataclass
class SynthesisInput:
    """Everything the synthesizer knows about one audit."""

    locale: str
    website_name: str
    normalized_url: str
    key_checks: dict[str, Any] = field(default_factory=dict)
    quick_wins: list[str] = field(default_factory=list)
    pillar_scores: dict[str, int] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)
    sampled_pages: list[PageSignals] = field(default_factory=list)
    narratives: list[PageNarrative] = field(default_factory=list)
    page_summary: dict[str, Any] = field(default_factory=dict)
    tech_fingerprint: dict[str, Any] | None = None


@dataclass
class SynthesisResult:
    summary_text: str
    report: dict[str, Any]


@dataclass
class _Candidate:
    summary_text: str
    report: dict[str, Any]
    source: str  # compact, full, fallback
    summary_failed: bool = False
    warnings: list[str] = field(default_factory=list)


def sum_hours(values: list[Any]) -> float:
    total = 0.0
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            total += max(0.0, value)
    return round(total * 10) / 10


def round_currency(value: float) -> float:
    return round(max(0.0, value) * 100) / 100


def _hours_of(report: dict[str, Any], key: str) -> list[Any]:
    return [entry.get("estimatedHours") for entry in report.get(key) or [] if isinstance(entry, dict)]


def build_payload(data: SynthesisInput, profile: str) -> dict[str, Any]:
    """Audit data sent to the backend, trimmed to the profile's caps."""
    quick_wins_cap, findings_cap, affected_cap, sampled_cap, recaps_cap = PAYLOAD_CAPS[profile]

    findings = []
    for finding in data.findings[:findings_cap]:
        entry = finding.to_dict()
        entry["affectedUrls"] = entry["affectedUrls"][:affected_cap]
        findings.append(entry)

    sampled = [
        {
            "url": page.url,
            "statusCode": page.status_code,
            "indexable": page.indexable,
            "canonical": page.canonical,
            "title": page.title,
            "metaDescription": page.meta_description,
            "h1Count": page.h1_count,
            "htmlLang": page.html_lang,
            "canonicalCount": page.canonical_count,
            "responseTimeMs": page.response_time_ms,
            "error": page.error,
        }
        for page in data.sampled_pages[:sampled_cap]
    ]

    recaps = []
    for narrative in data.narratives[:recaps_cap]:
        recaps.append(
            {
                "url": narrative.url,
                "priority": narrative.priority,
                "wordingScore": narrative.wording_score,
                "trustScore": narrative.trust_score,
                "ctaScore": narrative.cta_score,
                "seoCopyScore": narrative.seo_copy_score,
                "topIssues": narrative.top_issues[:3],
                "recommendations": narrative.recommendations[:3],
                "source": narrative.source,
            }
        )

    return {
        "locale": data.locale,
        "website": data.website_name,
        "normalizedUrl": data.normalized_url,
        "keyChecks": data.key_checks,
        "quickWins": data.quick_wins[:quick_wins_cap],
        "pillarScores": data.pillar_scores,
        "deepFindings": findings,
        "sampledUrls": sampled,
        "pageRecaps": recaps,
        "pageSummary": data.page_summary,
        "techFingerprint": data.tech_fingerprint,
        "sampledUrlsSummary": {
            "totalInputUrls": len(data.sampled_pages),
            "usedInPrompt": len(sampled),
            "nonIndexableCount": sum(1 for p in data.sampled_pages if not p.indexable),
            "errorCount": sum(1 for p in data.sampled_pages if p.error),
        },
        "pageRecapSummary": {
            "totalInputPages": len(data.narratives),
            "usedInPrompt": len(recaps),
            "highPriorityPages": sum(1 for n in data.narratives if n.priority == "high"),
        },
    }


def build_fallback_summary(data: SynthesisInput) -> str:
    top = data.quick_wins[:3]
    if data.locale == "en":
        opportunities = ", ".join(top) or "technical SEO baseline hardening"
        return (
            f"Audit completed for {data.normalized_url}. Main opportunities: {opportunities}. "
            "Execute a first remediation batch in 7 days, then run a broader optimization "
            "sprint over 3-4 weeks with validation checkpoints (indexability, performance, "
            "conversion)."
        )
    priorities = ", ".join(top) or "la stabilisation de la base SEO technique"
    return (
        f"Nous avons finalise l'audit de {data.normalized_url} avec une lecture combinee "
        "accessibilite, SEO technique, et qualite d'indexation sur un echantillon d'URLs "
        "representatif. Le site presente des points de fond solides, mais plusieurs "
        "optimisations peuvent generer des gains rapides sur la visibilite organique et la "
        "conversion.\n\n"
        f"Les priorites immediates concernent surtout {priorities}. En traitant ces actions "
        "en premier, vous reduisez le risque de perte de trafic, ameliorez la comprehension "
        "des pages par Google, et facilitez la montee en performance commerciale.\n\n"
        "La suite recommandee: executer un lot rapide en 7 jours, puis un lot "
        "d'optimisation plus large sur 3 a 4 semaines avec validation des resultats a chaque "
        "etape (indexabilite, performances, conversions)."
    )


def build_fallback_report(data: SynthesisInput, reason: str) -> dict[str, Any]:
    """Deterministic expert report derived from quick wins and findings."""
    locale = data.locale
    top = data.quick_wins[:8]

    todo = [
        {
            "phase": f"Phase {index + 1}",
            "objective": quick_win,
            "deliverable": localized(
                locale,
                f"Implementation validee pour: {quick_win}",
                f"Validated implementation for: {quick_win}",
            ),
            "estimatedHours": 2 + min(index, 6),
            "dependencies": [] if index == 0 else [f"Phase {index}"],
        }
        for index, quick_win in enumerate(top)
    ]

    week = [
        {
            "task": quick_win,
            "goal": localized(
                locale,
                "Corriger les blocages a fort impact SEO et conversion",
                "Fix high-impact SEO and conversion blockers",
            ),
            "estimatedHours": 2 + min(index, 4),
            "risk": localized(
                locale,
                "Dependance technique faible a moderee",
                "Low to medium technical dependency risk",
            ),
            "dependencies": [] if index == 0 else [top[0]],
        }
        for index, quick_win in enumerate(top[:5])
    ]

    month = [
        {
            "task": finding.title,
            "goal": finding.recommendation,
            "estimatedHours": 3 + min(index, 6),
            "risk": (
                localized(locale, "Risque business eleve si reporte", "High business risk if delayed")
                if finding.severity == "high"
                else localized(locale, "Risque modere", "Moderate risk")
            ),
            "dependencies": [],
        }
        for index, finding in enumerate(data.findings[:8])
    ]

    steps = (
        [
            "Validate impacted templates/pages",
            "Deploy in staging then production",
            "Verify via crawl and Search Console",
        ]
        if locale == "en"
        else [
            "Valider les templates/pages impactees",
            "Deployer en preproduction puis production",
            "Verifier via crawl et Search Console",
        ]
    )
    fast_plan = [
        {
            "task": quick_win,
            "whyItMatters": localized(
                locale,
                "Action rapide avec impact direct sur la visibilite, l indexation ou la conversion.",
                "Fast action with direct impact on visibility, indexation, or conversion.",
            ),
            "implementationSteps": list(steps),
            "estimatedHours": 3,
            "expectedImpact": localized(
                locale, "Gain SEO/conversion court terme", "Short-term SEO/conversion gain"
            ),
            "priority": "high",
        }
        for quick_win in top[:5]
    ]

    criteria = (
        ["Fix deployed and verified", "Crawl/indexability validation without regression"]
        if locale == "en"
        else ["Correction deployee et verifiee", "Validation crawl/indexabilite sans regression"]
    )
    backlog = [
        {
            "task": finding.title,
            "priority": finding.severity,
            "details": finding.recommendation,
            "estimatedHours": 6 if finding.severity == "high" else 4,
            "dependencies": [],
            "acceptanceCriteria": list(criteria),
        }
        for finding in data.findings[:10]
    ]

    def _severity(index: int) -> str:
        if index < 2:
            return "high"
        return "medium" if index < 5 else "low"

    priorities = [
        {
            "title": quick_win,
            "severity": _severity(index),
            "whyItMatters": localized(
                locale,
                "Ce point influence directement l indexabilite, la visibilite SEO ou la conversion.",
                "This point directly impacts indexability, SEO visibility, or conversion.",
            ),
            "recommendedFix": quick_win,
            "estimatedHours": 2 + min(index, 6),
        }
        for index, quick_win in enumerate(top)
    ]

    url_improvements = [
        {
            "url": page.url,
            "issue": page.error
            or localized(locale, "URL non indexable", "Potentially non-indexable URL"),
            "recommendation": localized(
                locale,
                "Corriger statut HTTP, directives robots et canonical pour securiser l indexation.",
                "Fix HTTP status, robots directives, and canonical signals to secure indexability.",
            ),
            "impact": "high",
        }
        for page in data.sampled_pages
        if page.error or not page.indexable
    ][:12]

    return {
        "executiveSummary": localized(
            locale,
            "Rapport genere en mode fallback: les priorites restent exploitables pour "
            "planifier la mise en oeuvre.",
            "Fallback report generated: priorities remain actionable for implementation planning.",
        ),
        "reportExplanation": localized(
            locale,
            "Ce document propose un plan d action SEO/technique oriente livraison et impact "
            "business, avec une priorisation rapide puis durable.",
            "This document provides a delivery-oriented SEO/technical action plan with "
            "fast-track and durable prioritization.",
        ),
        "strengths": [],
        "techFingerprint": data.tech_fingerprint,
        "priorities": priorities,
        "urlLevelImprovements": url_improvements,
        "implementationTodo": todo,
        "whatToFixThisWeek": week,
        "whatToFixThisMonth": month,
        "clientMessageTemplate": localized(
            locale,
            "Bonjour, suite a l audit, nous recommandons une phase de corrections prioritaires "
            "immediates, puis un plan d optimisation structure sur les prochaines semaines.",
            "Hello, following the audit, we recommend an immediate priority remediation "
            "phase, followed by a structured optimization plan over the next weeks.",
        ),
        "clientLongEmail": localized(
            locale,
            "Bonjour,\n\nNous avons finalise un audit complet de votre site et identifie des "
            "actions a tres fort impact sur la visibilite SEO et la conversion. Nous proposons "
            "un premier lot de corrections rapides (7 jours) pour traiter les points bloquants, "
            "puis un second lot d optimisations plus profondes (3 a 4 semaines) pour consolider "
            "la performance.\n\nChaque action est priorisee, chiffree en charge, et associee a "
            "des criteres de validation pour piloter la mise en oeuvre de facon claire.",
            "Hello,\n\nWe completed a full audit of your site and identified high-impact "
            "actions for SEO visibility and conversion. We recommend a first 7-day remediation "
            "batch to remove blockers, then a deeper 3-4 week optimization batch to consolidate "
            "performance.\n\nEach action is prioritized, estimated, and mapped to validation "
            "criteria so execution can be tracked with low delivery risk.",
        ),
        "fastImplementationPlan": fast_plan,
        "implementationBacklog": backlog,
        "invoiceScope": [
            {
                "item": entry["phase"],
                "description": entry["objective"],
                "estimatedHours": entry["estimatedHours"],
            }
            for entry in todo
        ],
        "warning": "LLM fallback used",
        "reason": reason,
    }


def ensure_priority_depth(report: dict[str, Any], data: SynthesisInput) -> dict[str, Any]:
    """
    Top up priorities before gating.

    Findings are added most severe first up to the maximum; quick wins
    are only added while under the minimum depth.
    """
    locale = data.locale
    seen: set[str] = set()
    priorities: list[dict[str, Any]] = []
    for entry in report.get("priorities") or []:
        if not isinstance(entry, dict):
            continue
        title = str(entry.get("title") or "").strip()
        if not title:
            continue
        priorities.append(entry)
        seen.add(title.lower())
    priorities = priorities[:MAX_PRIORITY_DEPTH]

    for finding in sorted(data.findings, key=lambda f: SEVERITY_RANK[f.severity], reverse=True):
        if len(priorities) >= MAX_PRIORITY_DEPTH:
            break
        key = finding.title.strip().lower()
        if not key or key in seen:
            continue
        priorities.append(
            {
                "title": finding.title,
                "severity": finding.severity,
                "whyItMatters": localized(
                    locale,
                    f"Impact {finding.impact}: {finding.description}",
                    f"{finding.impact} impact: {finding.description}",
                ),
                "recommendedFix": finding.recommendation,
                "estimatedHours": 6 if finding.severity == "high" else 4,
            }
        )
        seen.add(key)

    for quick_win in data.quick_wins:
        if len(priorities) >= MIN_PRIORITY_DEPTH:
            break
        key = quick_win.strip().lower()
        if not key or key in seen:
            continue
        priorities.append(
            {
                "title": quick_win,
                "severity": "medium",
                "whyItMatters": localized(
                    locale,
                    "Action rapide pour renforcer la base SEO technique et la conversion.",
                    "Fast action to strengthen technical SEO baseline and conversion.",
                ),
                "recommendedFix": quick_win,
                "estimatedHours": 3,
            }
        )
        seen.add(key)

    return {**report, "priorities": priorities[:MAX_PRIORITY_DEPTH]}


class ReportSynthesizer:
    """Generates the client summary and the gated expert report."""

    def __init__(
        self,
        config: AuditAutomationConfig,
        llm: LLMClient,
        quality_gate: ReportQualityGate | None = None,
    ):
        self.config = config
        self.llm = llm
        self.quality_gate = quality_gate or ReportQualityGate()

    async def generate(
        self,
        data: SynthesisInput,
        on_section: OnSection | None = None,
        budget: DeadlineBudget | None = None,
    ) -> SynthesisResult:
        """
        Produce the summary and the expert report.

        Args:
            data: Audit data
            on_section: Awaited with (section, done, total) as each logical
                section of the report is settled
            budget: Optional deadline shared with the caller

        Returns:
            SynthesisResult; generation failures never propagate
        """
        total = len(SECTIONS)

        async def _section(index: int) -> None:
            if on_section is not None:
                await on_section(SECTIONS[index], index + 1, total)

        if not self.llm.configured:
            result = self._fallback(data, "OPENAI_API_KEY is missing")
            for index in range(total):
                await _section(index)
            return result

        logger.info(
            "synthesis_started",
            model=self.config.llm_model,
            summary_timeout_ms=self.config.llm_summary_timeout_ms,
            expert_timeout_ms=self.config.llm_expert_timeout_ms,
            findings=len(data.findings),
            pages=len(data.sampled_pages),
        )

        candidate = _Candidate(summary_text="", report={}, source="compact")

        summary = await self.llm.generate_json(
            "summary",
            self._summary_messages(data, retry_mode=False),
            UserSummaryOutput,
            timeout_ms=self.config.llm_summary_timeout_ms,
            budget=budget,
        )
        if summary.ok and summary.value is not None:
            candidate.summary_text = summary.value.summary_text
        else:
            candidate.summary_text = build_fallback_summary(data)
            candidate.summary_failed = True
            candidate.warnings.append(f"summary failed: {summary.error}")
        await _section(0)

        compact = await self.llm.generate_json(
            "expert_compact",
            self._expert_messages(data, retry_mode=False, compact_mode=True),
            ExpertReportOutput,
            timeout_ms=self.config.llm_expert_timeout_ms,
            budget=budget,
        )
        if compact.ok and compact.value is not None:
            candidate.report = compact.value.to_report()
        else:
            prefix = "compact expert timeout" if compact.timed_out else "compact expert failed"
            candidate.warnings.append(f"{prefix}: {compact.error}")
            candidate.report = build_fallback_report(data, str(compact.error))
            candidate.source = "fallback"
        await _section(1)

        gate = self._gate(candidate.summary_text, candidate.report, data)
        retried = False
        await _section(2)

        if not gate.valid and candidate.source == "compact":
            retried = True
            logger.warning("synthesis_gate_rejected_compact", reasons=gate.reasons)
            if SUMMARY_RETRY_REASONS.intersection(gate.reasons):
                strict = await self.llm.generate_json(
                    "summary_strict",
                    self._summary_messages(data, retry_mode=True),
                    UserSummaryOutput,
                    timeout_ms=self.config.llm_summary_timeout_ms,
                    budget=budget,
                )
                if strict.ok and strict.value is not None:
                    candidate.summary_text = strict.value.summary_text
                else:
                    candidate.warnings.append(f"strict summary failed: {strict.error}")
            full = await self.llm.generate_json(
                "expert_full",
                self._expert_messages(data, retry_mode=True, compact_mode=False),
                ExpertReportOutput,
                timeout_ms=self.config.llm_expert_timeout_ms,
                budget=budget,
            )
            if full.ok and full.value is not None:
                candidate.report = full.value.to_report()
                candidate.source = "full"
            else:
                candidate.warnings.append(f"full pass failed: {full.error}")
            gate = self._gate(candidate.summary_text, candidate.report, data)
        await _section(3)

        report = self._with_cost(gate.report, data.locale)
        report["qualityGate"] = {
            "valid": gate.valid,
            "reasons": gate.reasons,
            "retried": retried,
            "fallback": candidate.source == "fallback",
        }
        if candidate.summary_failed:
            report["summaryWarning"] = localized(
                data.locale,
                "Resume utilisateur LLM indisponible. Resume deterministe utilise.",
                "LLM user summary failed. Deterministic summary used.",
            )
        if not gate.valid:
            report["qualityWarning"] = localized(
                data.locale,
                "Sortie normalisee apres echec du quality gate.",
                "Output normalized after quality gate failure.",
            )
        for warning in candidate.warnings:
            logger.warning("synthesis_degraded", warning=warning[:300])

        logger.info(
            "synthesis_completed",
            source=candidate.source,
            valid=gate.valid,
            reasons=gate.reasons,
            retried=retried,
            priorities=len(report.get("priorities", [])),
        )
        await _section(4)
        return SynthesisResult(summary_text=gate.summary_text, report=report)

    def _fallback(self, data: SynthesisInput, reason: str) -> SynthesisResult:
        logger.info("synthesis_fallback", reason=reason)
        gate = self._gate(build_fallback_summary(data), build_fallback_report(data, reason), data)
        report = self._with_cost(gate.report, data.locale)
        report["qualityGate"] = {
            "valid": gate.valid,
            "reasons": gate.reasons,
            "retried": False,
            "fallback": True,
        }
        return SynthesisResult(summary_text=gate.summary_text, report=report)

    def _gate(self, summary_text: str, report: dict[str, Any], data: SynthesisInput) -> QualityGateResult:
        if data.tech_fingerprint and not (report.get("techFingerprint") or {}).get("primaryStack"):
            report = {**report, "techFingerprint": data.tech_fingerprint}
        context = QualityGateContext(
            locale=data.locale,
            website_name=data.website_name,
            normalized_url=data.normalized_url,
            quick_wins=data.quick_wins,
            pillar_scores=data.pillar_scores,
            findings=data.findings,
        )
        return self.quality_gate.apply(summary_text, ensure_priority_depth(report, data), context)

    def _with_cost(self, report: dict[str, Any], locale: str) -> dict[str, Any]:
        """Attach a cost estimate computed from the report's own hour estimates."""
        total_hours = (
            sum_hours(_hours_of(report, "invoiceScope"))
            or sum_hours(_hours_of(report, "implementationBacklog"))
            or sum_hours(_hours_of(report, "implementationTodo"))
            or sum_hours(_hours_of(report, "priorities"))
        )
        fast_track_hours = sum_hours(_hours_of(report, "fastImplementationPlan"))
        rate_min = self.config.hourly_rate_min
        rate_max = self.config.hourly_rate_max

        assumptions = (
            [
                "Estimation is automatically derived from estimated implementation hours.",
                "Hourly rates come from server configuration.",
                "Final budget may vary with real technical complexity and business constraints.",
            ]
            if locale == "en"
            else [
                "Le chiffrage est determine automatiquement a partir des heures estimees.",
                "Les taux horaires proviennent de la configuration serveur.",
                "Le budget final peut varier selon complexite technique reelle et contraintes metier.",
            ]
        )
        return {
            **report,
            "costEstimate": {
                "currency": self.config.currency,
                "hourlyRateMin": rate_min,
                "hourlyRateMax": rate_max,
                "totalEstimatedHours": total_hours,
                "estimatedCostMin": round_currency(total_hours * rate_min),
                "estimatedCostMax": round_currency(total_hours * rate_max),
                "fastTrackHours": fast_track_hours,
                "fastTrackCostMin": round_currency(fast_track_hours * rate_min),
                "fastTrackCostMax": round_currency(fast_track_hours * rate_max),
                "assumptions": assumptions,
            },
        }

    def _summary_messages(self, data: SynthesisInput, retry_mode: bool) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": localized(data.locale, *SUMMARY_PROMPT)}]
        if retry_mode:
            messages.append({"role": "system", "content": localized(data.locale, *SUMMARY_STRICT_PROMPT)})
        messages.append(
            {
                "role": "user",
                "content": json.dumps(build_payload(data, "summary"), ensure_ascii=False, default=str),
            }
        )
        return messages

    def _expert_messages(
        self,
        data: SynthesisInput,
        retry_mode: bool,
        compact_mode: bool,
    ) -> list[dict[str, str]]:
        locale = data.locale
        messages = [
            {"role": "system", "content": localized(locale, *EXPERT_PROMPT)},
            {"role": "system", "content": localized(locale, *EXPERT_LIMITS_PROMPT)},
        ]
        if compact_mode:
            messages.append({"role": "system", "content": localized(locale, *EXPERT_COMPACT_PROMPT)})
        if retry_mode:
            messages.append({"role": "system", "content": localized(locale, *EXPERT_STRICT_PROMPT)})
        messages.append({"role": "system", "content": localized(locale, *EXPERT_FORMAT_PROMPT)})
        payload = build_payload(data, "expert_compact" if compact_mode else "expert")
        messages.append(
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False, default=str)}
        )
        return messages
