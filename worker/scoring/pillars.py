"""Pillar scoring for an audited site.

Five pillars (seo, performance, technical, trust, conversion) each start
at 100 and lose fixed points per detected deficiency. Every deduction
adds one localized quick win. The computation is pure: identical inputs
always give identical scores and quick wins.
"""

from dataclasses import dataclass, field
from typing import Any

from worker.crawler.inspector import PageSignals
from worker.locale import localized

# Homepage-granularity cap; page-level quick wins are merged upstream
MAX_QUICK_WINS = 8

TTFB_THRESHOLD_MS = 800
TOTAL_RESPONSE_THRESHOLD_MS = 2000
PAGE_WEIGHT_THRESHOLD_BYTES = 500_000

PILLARS = ("seo", "performance", "technical", "trust", "conversion")

QUICK_WINS: dict[str, tuple[str, str]] = {
    "home_title": (
        "Ajouter une balise <title> pertinente sur la page d’accueil.",
        "Add a clear, intent-focused <title> on the homepage.",
    ),
    "home_meta": (
        "Ajouter une meta description claire sur la page d’accueil.",
        "Add a compelling meta description on the homepage.",
    ),
    "home_h1": (
        "Conserver un seul H1 principal pour renforcer la clarté SEO.",
        "Keep exactly one primary H1 to improve SEO clarity.",
    ),
    "home_canonical": (
        "Définir une URL canonique pour limiter le contenu dupliqué.",
        "Set a canonical URL to reduce duplicate-content risk.",
    ),
    "sample_title_coverage": (
        "Corriger les balises title manquantes sur les URLs analysées et standardiser les modèles de title.",
        "Fix missing page titles across sampled URLs and enforce unique title patterns.",
    ),
    "sample_meta_coverage": (
        "Améliorer la couverture des meta descriptions sur les URLs analysées avec des contenus uniques.",
        "Improve meta description coverage on sampled URLs with unique copy.",
    ),
    "sample_h1_structure": (
        "Garantir un H1 descriptif unique par page indexable dans les templates.",
        "Enforce one descriptive H1 per indexed page in templates/components.",
    ),
    "sample_canonical_consistency": (
        "Uniformiser les canonicals (une canonical auto-référente unique par page).",
        "Standardize canonical tags (single self-referencing canonical per page).",
    ),
    "sample_lang_coverage": (
        "Renseigner l'attribut html[lang] sur chaque page pour fiabiliser le ciblage SEO multilingue.",
        "Ensure each page sets a valid html[lang] for international SEO consistency.",
    ),
    "ttfb": (
        "Réduire le TTFB (cache serveur/CDN, optimisation backend).",
        "Reduce TTFB (server-side caching, CDN, backend optimization).",
    ),
    "total_response": (
        "Améliorer le temps total de réponse des pages critiques.",
        "Lower total response time on critical pages to improve UX and crawl budget.",
    ),
    "page_weight": (
        "Alléger la page (images, scripts, CSS) pour accélérer le chargement.",
        "Reduce page weight (images/scripts/CSS) to speed up rendering.",
    ),
    "https": (
        "Forcer HTTPS sur l’ensemble du site.",
        "Enforce HTTPS across the entire website.",
    ),
    "home_status": (
        "Corriger la disponibilité de la page d’accueil (code HTTP valide).",
        "Fix homepage availability and keep HTTP status in the 2xx range.",
    ),
    "sitemap": (
        "Ajouter un sitemap.xml et le déclarer dans robots.txt.",
        "Publish sitemap.xml and reference it in robots.txt.",
    ),
    "indexability": (
        "Corriger les URLs non indexables (noindex involontaire, erreurs HTTP, canonicals manquants).",
        "Fix non-indexable URLs (unexpected noindex, HTTP errors, missing/invalid canonicals).",
    ),
    "structured_data": (
        "Ajouter des données structurées (Organization, LocalBusiness, FAQ...) pour renforcer la confiance.",
        "Add structured data (Organization, LocalBusiness, FAQ) to strengthen trust and eligibility.",
    ),
    "open_graph": (
        "Configurer les balises OpenGraph pour mieux contrôler le partage social.",
        "Implement OpenGraph tags to control social previews and improve share CTR.",
    ),
    "forms": (
        "Ajouter un formulaire de contact visible sur les pages stratégiques.",
        "Expose a visible contact form on high-intent strategic pages.",
    ),
    "cookies": (
        "Ajouter un bandeau cookies conforme pour renforcer la crédibilité.",
        "Add a compliant cookie consent banner to improve trust signals.",
    ),
}


@dataclass
class AuditScore:
    """Pillar scores, quick wins and the structured key checks."""

    pillar_scores: dict[str, int]
    quick_wins: list[str] = field(default_factory=list)
    key_checks: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pillarScores": self.pillar_scores,
            "quickWins": self.quick_wins,
            "keyChecks": self.key_checks,
        }


def clamp_score(value: float) -> int:
    return max(0, min(100, round(value)))


def _ratio_penalty(affected: int, total: int, weight: float, cap: int) -> int:
    return min(cap, round(affected / total * weight))


def compute_scores(
    homepage: PageSignals,
    sitemap_urls: list[str],
    sampled_pages: list[PageSignals],
    locale: str = "fr",
) -> AuditScore:
    """
    Score the homepage and the sampled pages.

    Args:
        homepage: Inspected homepage signals
        sitemap_urls: Sitemap documents found during discovery
        sampled_pages: Inspected sample of site URLs
        locale: Locale of the quick-win strings

    Returns:
        AuditScore with clamped pillar scores and capped quick wins
    """
    triggered: list[str] = []
    sampled_total = len(sampled_pages)

    seo = 100
    if not homepage.title:
        seo -= 18
        triggered.append("home_title")
    if not homepage.meta_description:
        seo -= 15
        triggered.append("home_meta")
    if homepage.h1_count != 1:
        seo -= 10
        triggered.append("home_h1")
    if not homepage.canonical_urls:
        seo -= 10
        triggered.append("home_canonical")

    missing_title = sum(1 for p in sampled_pages if not (p.title or "").strip())
    missing_meta = sum(1 for p in sampled_pages if not (p.meta_description or "").strip())
    bad_h1 = sum(1 for p in sampled_pages if p.h1_count != 1)
    canonical_issues = sum(
        1 for p in sampled_pages if not p.canonical or p.canonical_count != 1
    )
    missing_lang = sum(1 for p in sampled_pages if not p.html_lang)
    indexability_errors = sum(
        1
        for p in sampled_pages
        if not p.indexable or (p.status_code if p.status_code is not None else 500) >= 400
    )

    if sampled_total:
        # (affected count, weight, cap, quick win key)
        coverage_rules = (
            (missing_title, 20, 15, "sample_title_coverage"),
            (missing_meta, 18, 14, "sample_meta_coverage"),
            (bad_h1, 12, 10, "sample_h1_structure"),
            (canonical_issues, 12, 10, "sample_canonical_consistency"),
            (missing_lang, 10, 8, "sample_lang_coverage"),
        )
        for affected, weight, cap, key in coverage_rules:
            if affected:
                seo -= _ratio_penalty(affected, sampled_total, weight, cap)
                triggered.append(key)

    performance = 100
    if (homepage.ttfb_ms or 0) > TTFB_THRESHOLD_MS:
        performance -= 18
        triggered.append("ttfb")
    if (homepage.total_response_ms or 0) > TOTAL_RESPONSE_THRESHOLD_MS:
        performance -= 12
        triggered.append("total_response")
    if (homepage.content_length or 0) > PAGE_WEIGHT_THRESHOLD_BYTES:
        performance -= 10
        triggered.append("page_weight")

    technical = 100
    if not homepage.https:
        technical -= 25
        triggered.append("https")
    if (homepage.status_code or 0) >= 400:
        technical -= 30
        triggered.append("home_status")
    if not sitemap_urls:
        technical -= 15
        triggered.append("sitemap")
    if sampled_total and indexability_errors:
        technical -= _ratio_penalty(indexability_errors, sampled_total, 40, 25)
        triggered.append("indexability")

    trust = 100
    if not homepage.has_structured_data:
        trust -= 12
        triggered.append("structured_data")
    if not homepage.open_graph_tags:
        trust -= 8
        triggered.append("open_graph")

    conversion = 100
    if not homepage.has_forms:
        conversion -= 20
        triggered.append("forms")
    if not homepage.has_cookie_banner:
        conversion -= 5
        triggered.append("cookies")

    quick_wins = list(dict.fromkeys(localized(locale, *QUICK_WINS[key]) for key in triggered))

    return AuditScore(
        pillar_scores={
            "seo": clamp_score(seo),
            "performance": clamp_score(performance),
            "technical": clamp_score(technical),
            "trust": clamp_score(trust),
            "conversion": clamp_score(conversion),
        },
        quick_wins=quick_wins[:MAX_QUICK_WINS],
        key_checks={
            "accessibility": {
                "statusCode": homepage.status_code,
                "https": homepage.https,
                "redirectCount": len(homepage.redirect_chain),
                "finalUrl": homepage.final_url,
            },
            "seo": {
                "title": bool(homepage.title),
                "metaDescription": bool(homepage.meta_description),
                "canonicalCount": len(homepage.canonical_urls),
                "h1Count": homepage.h1_count,
                "lang": homepage.html_lang,
                "sampledUrls": sampled_total,
                "sampledCoverage": {
                    "missingTitle": missing_title,
                    "missingMetaDescription": missing_meta,
                    "badH1Count": bad_h1,
                    "canonicalIssues": canonical_issues,
                    "missingLang": missing_lang,
                },
            },
            "technology": {
                "cmsHints": homepage.detected_cms_hints,
                "analytics": homepage.has_analytics,
                "tagManager": homepage.has_tag_manager,
                "pixel": homepage.has_pixel,
                "cookieBanner": homepage.has_cookie_banner,
                "forms": homepage.has_forms,
                "structuredData": homepage.has_structured_data,
            },
            "performance": {
                "ttfbMs": homepage.ttfb_ms,
                "totalResponseMs": homepage.total_response_ms,
                "contentLength": homepage.content_length,
                "cwv": {"lcp": "pending", "cls": "pending", "inp": "pending"},
            },
            "sitemap": {
                "sitemapCount": len(sitemap_urls),
                "sampledUrlCount": sampled_total,
                "indexabilityIssues": indexability_errors,
            },
        },
    )
