"""Normalization and validation of generated expert reports.

The gate never raises. Every textual field goes through a fallback chain
(generated value, then a stock localized text) and each fallback records
a reason code. ``valid`` is true only when no reason was recorded.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any

from worker.analysis.findings import SEVERITY_RANK, Finding
from worker.locale import localized

MIN_PRIORITIES = 10
MAX_PRIORITIES = 12

LANGUAGE_MARKER_THRESHOLD = 4

FR_MARKERS = (
    " le ", " la ", " les ", " des ", " pour ", " avec ", " votre ",
    " audit ", " optimisation ", " conversion ", " impact ",
)  # fmt: skip
EN_MARKERS = (
    " the ", " and ", " for ", " with ", " your ", " audit ",
    " optimization ", " conversion ", " impact ", " priority ", " implementation ",
)  # fmt: skip

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^a-z0-9'\s]")

DIAGNOSTIC_CHAPTERS: dict[str, tuple[str, str]] = {
    "conversionAndClarity": (
        "Conversion et clarte: Non verifiable.",
        "Conversion and clarity: Not verifiable.",
    ),
    "speedAndPerformance": (
        "Vitesse et performance: Non verifiable.",
        "Speed and performance: Not verifiable.",
    ),
    "seoFoundations": ("Fondations SEO: Non verifiable.", "SEO foundations: Not verifiable."),
    "credibilityAndTrust": (
        "Credibilite et confiance: Non verifiable.",
        "Credibility and trust: Not verifiable.",
    ),
    "techAndScalability": (
        "Tech et scalabilite: Non verifiable.",
        "Tech and scalability: Not verifiable.",
    ),
    "scorecardAndBusinessOpportunities": (
        "Scorecard et opportunites business: Non verifiable.",
        "Scorecard and business opportunities: Not verifiable.",
    ),
}

# pillar -> (title, why, fix, hours when < 65, hours otherwise), texts are (fr, en)
PILLAR_ACTIONS: dict[str, tuple[tuple[str, str], tuple[str, str], tuple[str, str], int, int]] = {
    "seo": (
        (
            "Corriger la qualite SEO on-page sur les templates prioritaires",
            "Fix on-page SEO quality on priority templates",
        ),
        (
            "Le deficit SEO degrade la visibilite organique et la couverture des intentions.",
            "SEO gaps reduce organic visibility and intent coverage.",
        ),
        (
            "Standardiser title/meta/H1/canonical/lang sur les pages a fort potentiel.",
            "Standardize title/meta/H1/canonical/lang on high-potential pages.",
        ),
        8,
        5,
    ),
    "performance": (
        (
            "Optimiser les pages lentes et le budget de rendu",
            "Optimize slow pages and rendering budget",
        ),
        (
            "La lenteur penalise conversion, crawl budget et experience utilisateur.",
            "Slowness hurts conversion, crawl budget, and user experience.",
        ),
        (
            "Prioriser cache, poids des assets, critical CSS et reduction JS.",
            "Prioritize caching, asset weight reduction, critical CSS, and JS reduction.",
        ),
        10,
        6,
    ),
    "technical": (
        (
            "Stabiliser l'indexabilite et la conformite technique",
            "Stabilize indexability and technical compliance",
        ),
        (
            "Les defauts techniques bloquent la decouverte et la consolidation SEO.",
            "Technical defects block discovery and SEO consolidation.",
        ),
        (
            "Auditer robots, canonicals, statuts HTTP, sitemap et redirections.",
            "Audit robots, canonicals, HTTP status, sitemap, and redirects.",
        ),
        9,
        6,
    ),
    "trust": (
        (
            "Renforcer les signaux de confiance et le marquage schema.org",
            "Strengthen trust signals and schema.org coverage",
        ),
        (
            "Les signaux de confiance influencent CTR, conversion et perception de marque.",
            "Trust signals influence CTR, conversion, and brand perception.",
        ),
        (
            "Ajouter schemas, preuves sociales, mentions legale et coherence marque.",
            "Add schema, social proof, legal pages, and brand consistency signals.",
        ),
        7,
        4,
    ),
    "conversion": (
        (
            "Ameliorer le tunnel de conversion et les points de contact",
            "Improve conversion funnel and contact touchpoints",
        ),
        (
            "Les frictions de conversion reduisent la valeur business des visites SEO.",
            "Conversion friction reduces business value of SEO traffic.",
        ),
        (
            "Renforcer CTA, formulaires et navigation vers les pages commerciales.",
            "Strengthen CTA, forms, and paths to commercial pages.",
        ),
        8,
        5,
    ),
}

QUICK_WIN_WHY = (
    "Action rapide pour renforcer la base SEO technique et la conversion.",
    "Fast action to strengthen technical SEO baseline and conversion.",
)


@dataclass
class QualityGateContext:
    """Deterministic audit data used to enrich and check a report."""

    locale: str
    website_name: str
    normalized_url: str
    quick_wins: list[str] = field(default_factory=list)
    pillar_scores: dict[str, int] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)


@dataclass
class QualityGateResult:
    summary_text: str
    report: dict[str, Any]
    valid: bool
    reasons: list[str]


def clean_text(value: Any) -> str:
    """Collapse whitespace; non-strings become an empty string."""
    if not isinstance(value, str):
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_hours(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value) or value <= 0:
        return fallback
    return round(value * 10) / 10


def normalize_severity(value: Any) -> str:
    lowered = value.lower() if isinstance(value, str) else ""
    return lowered if lowered in ("high", "low") else "medium"


def normalize_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [text for text in (clean_text(entry) for entry in value) if text]


def _entries(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry if isinstance(entry, dict) else {} for entry in value]


def normalize_priority(entry: dict[str, Any]) -> dict[str, Any] | None:
    """Clean one priority; None when title or rationale is missing."""
    title = clean_text(entry.get("title"))
    why = clean_text(entry.get("whyItMatters"))
    fix = clean_text(entry.get("recommendedFix")) or title
    if not title or not why or not fix:
        return None
    return {
        "title": title,
        "severity": normalize_severity(entry.get("severity")),
        "whyItMatters": why,
        "recommendedFix": fix,
        "estimatedHours": normalize_hours(entry.get("estimatedHours"), 3),
    }


def count_language_markers(text: str, markers: tuple[str, ...]) -> int:
    """Number of distinct markers present in ``text``."""
    return sum(1 for marker in markers if marker in text)


def has_language_mismatch(text: str, locale: str) -> bool:
    """
    Flag text written in the wrong language, or in both.

    Mixed when both locales reach the marker threshold; otherwise the
    off-locale count must reach the threshold and beat the expected one.
    """
    normalized = f" {_NON_WORD_RE.sub(' ', text.lower())} "
    fr_count = count_language_markers(normalized, FR_MARKERS)
    en_count = count_language_markers(normalized, EN_MARKERS)

    if fr_count >= LANGUAGE_MARKER_THRESHOLD and en_count >= LANGUAGE_MARKER_THRESHOLD:
        return True
    if locale == "fr":
        return en_count >= LANGUAGE_MARKER_THRESHOLD and en_count > fr_count
    return fr_count >= LANGUAGE_MARKER_THRESHOLD and fr_count > en_count


def pillar_actions(pillar_scores: dict[str, int], locale: str) -> list[dict[str, Any]]:
    """Generic actions for pillars under 90, weakest pillar first."""
    ranked = sorted(
        (
            (name, score)
            for name, score in pillar_scores.items()
            if isinstance(score, (int, float)) and math.isfinite(score)
        ),
        key=lambda item: item[1],
    )
    actions: list[dict[str, Any]] = []
    for name, score in ranked:
        action = PILLAR_ACTIONS.get(name.lower())
        if score >= 90 or action is None:
            continue
        title, why, fix, weak_hours, hours = action
        weak = score < 65
        actions.append(
            {
                "title": localized(locale, *title),
                "severity": "high" if weak else "medium",
                "whyItMatters": localized(locale, *why),
                "recommendedFix": localized(locale, *fix),
                "estimatedHours": weak_hours if weak else hours,
            }
        )
    return actions


def generic_actions(locale: str, website_name: str) -> list[dict[str, Any]]:
    """Filler actions used when every other source is exhausted."""
    if locale == "en":
        rows = [
            (
                f"Set up a weekly SEO health dashboard for {website_name}",
                "Weekly tracking detects regressions and gains quickly.",
                "Track indexation, critical pages, performance, and conversion cohorts.",
                3,
            ),
            (
                "Validate every fix with a technical SEO QA protocol",
                "Without QA, technical regressions erase optimization gains.",
                "Use preprod/prod checklists: crawl, canonicals, title/meta, logs, tracking.",
                4,
            ),
            (
                "Schedule a monthly technical SEO hardening sprint",
                "A recurring sprint hardens the SEO foundation over time.",
                "Reserve monthly capacity for indexability, performance, and internal-link fixes.",
                5,
            ),
        ]
    else:
        rows = [
            (
                f"Mettre en place un tableau de bord SEO hebdomadaire pour {website_name}",
                "Le pilotage hebdomadaire permet de mesurer rapidement les regressions et gains.",
                "Suivre indexation, pages critiques, performances et conversions par cohortes.",
                3,
            ),
            (
                "Valider chaque correction avec un protocole de QA SEO",
                "Sans QA, les regressions techniques annulent les gains d'optimisation.",
                "Ajouter checklist preprod/prod: crawl, canonicals, title/meta, logs, tracking.",
                4,
            ),
            (
                "Planifier un sprint mensuel de hardening SEO technique",
                "Un sprint recurrent consolide durablement les fondations SEO.",
                "Allouer un lot mensuel aux fixes indexabilite, performance et maillage interne.",
                5,
            ),
        ]
    return [
        {
            "title": title,
            "severity": "medium",
            "whyItMatters": why,
            "recommendedFix": fix,
            "estimatedHours": hours,
        }
        for title, why, fix, hours in rows
    ]


def finding_priority(finding: Finding, locale: str) -> dict[str, Any]:
    return {
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


def quick_win_priority(quick_win: str, locale: str) -> dict[str, Any]:
    return {
        "title": quick_win,
        "severity": "medium",
        "whyItMatters": localized(locale, *QUICK_WIN_WHY),
        "recommendedFix": quick_win,
        "estimatedHours": 3,
    }


class ReportQualityGate:
    """Applies normalization, priority enrichment and language checks."""

    def __init__(self, min_priorities: int = MIN_PRIORITIES, max_priorities: int = MAX_PRIORITIES):
        self.min_priorities = min_priorities
        self.max_priorities = max_priorities

    def apply(
        self,
        summary_text: str,
        report: dict[str, Any],
        context: QualityGateContext,
    ) -> QualityGateResult:
        """
        Normalize a generated report against the audit context.

        Args:
            summary_text: Client-facing summary
            report: camelCase report document (generated or fallback)
            context: Deterministic audit data

        Returns:
            QualityGateResult with the normalized report and verdict
        """
        locale = context.locale
        reasons: list[str] = []

        summary = clean_text(summary_text)
        if not summary:
            reasons.append("missing_summary_text")
            summary = localized(
                locale,
                f"Resume d'audit indisponible pour {context.normalized_url}.",
                f"Audit summary unavailable for {context.normalized_url}.",
            )

        def require(key: str, fallback: str, reason: str) -> str:
            value = clean_text(report.get(key))
            if value:
                return value
            reasons.append(reason)
            return fallback

        normalized: dict[str, Any] = dict(report)
        normalized.update(
            executiveSummary=require(
                "executiveSummary",
                localized(locale, "Resume executif indisponible.", "Executive summary unavailable."),
                "missing_executive_summary",
            ),
            reportExplanation=require(
                "reportExplanation",
                localized(
                    locale,
                    "Explication du rapport indisponible.",
                    "Report explanation unavailable.",
                ),
                "missing_report_explanation",
            ),
            clientMessageTemplate=require(
                "clientMessageTemplate",
                localized(
                    locale,
                    "Bonjour, voici les priorites a traiter en premier.",
                    "Hello, here are the top priorities to address first.",
                ),
                "missing_client_message_template",
            ),
            clientLongEmail=require("clientLongEmail", summary, "missing_client_long_email"),
            strengths=normalize_string_list(report.get("strengths")),
            diagnosticChapters=self._diagnostic_chapters(report.get("diagnosticChapters"), locale),
            techFingerprint=self._tech_fingerprint(report.get("techFingerprint"), locale),
            urlLevelImprovements=self._url_improvements(report.get("urlLevelImprovements")),
            implementationTodo=self._todo(report.get("implementationTodo")),
            whatToFixThisWeek=self._plan(report.get("whatToFixThisWeek"), locale),
            whatToFixThisMonth=self._plan(report.get("whatToFixThisMonth"), locale),
            fastImplementationPlan=self._fast_plan(report.get("fastImplementationPlan")),
            implementationBacklog=self._backlog(report.get("implementationBacklog")),
            invoiceScope=self._invoice(report.get("invoiceScope")),
        )
        normalized["priorities"] = self.build_priorities(
            report.get("priorities"), context, reasons
        )
        if len(normalized["priorities"]) < self.min_priorities:
            reasons.append("priority_count_below_minimum")

        chapters = normalized["diagnosticChapters"]
        fingerprint = normalized["techFingerprint"]
        corpus_parts = [
            summary,
            normalized["executiveSummary"],
            normalized["reportExplanation"],
            normalized["clientMessageTemplate"],
            normalized["clientLongEmail"],
            *chapters.values(),
            fingerprint["primaryStack"],
            *fingerprint["evidence"],
            *fingerprint["unknowns"],
        ]
        for entry in normalized["priorities"]:
            corpus_parts.extend([entry["title"], entry["whyItMatters"], entry["recommendedFix"]])
        if has_language_mismatch(" ".join(p for p in corpus_parts if p), locale):
            reasons.append("language_mismatch_detected")

        unique_reasons = list(dict.fromkeys(reasons))
        return QualityGateResult(
            summary_text=summary,
            report=normalized,
            valid=not unique_reasons,
            reasons=unique_reasons,
        )

    def build_priorities(
        self,
        base: Any,
        context: QualityGateContext,
        reasons: list[str],
    ) -> list[dict[str, Any]]:
        """
        Merge priorities from every source until the minimum is reached.

        Order: generated priorities, findings (most severe first), quick
        wins, pillar actions, generic actions. Titles are unique
        case-insensitively and the list is capped at the maximum.
        """
        locale = context.locale
        seen: set[str] = set()
        priorities: list[dict[str, Any]] = []

        def _add(entry: dict[str, Any]) -> None:
            candidate = normalize_priority(entry)
            if candidate is None:
                return
            key = candidate["title"].lower()
            if key in seen:
                return
            seen.add(key)
            priorities.append(candidate)

        for entry in _entries(base):
            _add(entry)

        findings = sorted(context.findings, key=lambda f: SEVERITY_RANK[f.severity], reverse=True)
        sources = [
            *(finding_priority(f, locale) for f in findings),
            *(quick_win_priority(q, locale) for q in context.quick_wins),
            *pillar_actions(context.pillar_scores, locale),
            *generic_actions(locale, context.website_name),
        ]
        for entry in sources:
            if len(priorities) >= self.max_priorities:
                break
            _add(entry)

        if len(priorities) < self.min_priorities:
            reasons.append("priority_enrichment_exhausted")
        return priorities[: self.max_priorities]

    def _diagnostic_chapters(self, value: Any, locale: str) -> dict[str, str]:
        chapters = value if isinstance(value, dict) else {}
        return {
            key: clean_text(chapters.get(key)) or localized(locale, *fallback)
            for key, fallback in DIAGNOSTIC_CHAPTERS.items()
        }

    def _tech_fingerprint(self, value: Any, locale: str) -> dict[str, Any]:
        fingerprint = value if isinstance(value, dict) else {}
        raw_confidence = fingerprint.get("confidence")
        if isinstance(raw_confidence, (int, float)) and math.isfinite(raw_confidence):
            confidence = max(0.0, min(1.0, round(raw_confidence * 100) / 100))
        else:
            confidence = 0
        return {
            "primaryStack": clean_text(fingerprint.get("primaryStack"))
            or localized(locale, "Non verifiable", "Not verifiable"),
            "confidence": confidence,
            "evidence": normalize_string_list(fingerprint.get("evidence"))[:8],
            "alternatives": normalize_string_list(fingerprint.get("alternatives"))[:4],
            "unknowns": normalize_string_list(fingerprint.get("unknowns"))[:5],
        }

    def _url_improvements(self, value: Any) -> list[dict[str, Any]]:
        rows = (
            {
                "url": clean_text(entry.get("url")),
                "issue": clean_text(entry.get("issue")),
                "recommendation": clean_text(entry.get("recommendation")),
                "impact": normalize_severity(entry.get("impact")),
            }
            for entry in _entries(value)
        )
        return [row for row in rows if row["url"] and row["issue"] and row["recommendation"]]

    def _todo(self, value: Any) -> list[dict[str, Any]]:
        rows = (
            {
                "phase": clean_text(entry.get("phase")) or f"Phase {index + 1}",
                "objective": clean_text(entry.get("objective")),
                "deliverable": clean_text(entry.get("deliverable")),
                "estimatedHours": normalize_hours(entry.get("estimatedHours"), 3),
                "dependencies": normalize_string_list(entry.get("dependencies")),
            }
            for index, entry in enumerate(_entries(value))
        )
        return [row for row in rows if row["objective"] and row["deliverable"]]

    def _plan(self, value: Any, locale: str) -> list[dict[str, Any]]:
        rows = (
            {
                "task": clean_text(entry.get("task")),
                "goal": clean_text(entry.get("goal"))
                or localized(
                    locale, "Ameliorer les signaux SEO critiques", "Improve critical SEO signals"
                ),
                "estimatedHours": normalize_hours(entry.get("estimatedHours"), 3),
                "risk": clean_text(entry.get("risk"))
                or localized(locale, "Risque modere", "Moderate risk"),
                "dependencies": normalize_string_list(entry.get("dependencies")),
            }
            for entry in _entries(value)
        )
        return [row for row in rows if row["task"]]

    def _fast_plan(self, value: Any) -> list[dict[str, Any]]:
        rows = (
            {
                "task": clean_text(entry.get("task")),
                "whyItMatters": clean_text(entry.get("whyItMatters")),
                "implementationSteps": normalize_string_list(entry.get("implementationSteps")),
                "estimatedHours": normalize_hours(entry.get("estimatedHours"), 3),
                "expectedImpact": clean_text(entry.get("expectedImpact")),
                "priority": normalize_severity(entry.get("priority")),
            }
            for entry in _entries(value)
        )
        return [row for row in rows if row["task"] and row["whyItMatters"] and row["expectedImpact"]]

    def _backlog(self, value: Any) -> list[dict[str, Any]]:
        rows = (
            {
                "task": clean_text(entry.get("task")),
                "priority": normalize_severity(entry.get("priority")),
                "details": clean_text(entry.get("details")),
                "estimatedHours": normalize_hours(entry.get("estimatedHours"), 4),
                "dependencies": normalize_string_list(entry.get("dependencies")),
                "acceptanceCriteria": normalize_string_list(entry.get("acceptanceCriteria")),
            }
            for entry in _entries(value)
        )
        return [row for row in rows if row["task"] and row["details"]]

    def _invoice(self, value: Any) -> list[dict[str, Any]]:
        rows = (
            {
                "item": clean_text(entry.get("item")) or f"Lot {index + 1}",
                "description": clean_text(entry.get("description")),
                "estimatedHours": normalize_hours(entry.get("estimatedHours"), 3),
            }
            for index, entry in enumerate(_entries(value))
        )
        return [row for row in rows if row["description"]]
