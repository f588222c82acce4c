"""Heuristic findings engine over a crawled page set."""

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urljoin, urlsplit

from worker.crawler.inspector import PageSignals
from worker.locale import localized

Severity = Literal["high", "medium", "low"]
Impact = Literal["traffic", "indexation", "conversion"]

MAX_AFFECTED_URLS = 30

SEVERITY_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

TITLE_LENGTH_RANGE = (20, 65)
META_LENGTH_RANGE = (80, 170)
SLOW_PAGE_MS = 2200
THIN_CONTENT_WORDS = 180
WEAK_LINKING_MIN = 2
TEMPLATE_DUPLICATE_MIN = 3


@dataclass(frozen=True)
class FindingRule:
    """Static definition of one detection rule and its localized texts."""

    code: str
    confidence: float
    impact: Impact
    title: tuple[str, str]
    description: tuple[str, str]
    recommendation: tuple[str, str]


# Texts are (fr, en); descriptions take a ``{count}`` placeholder
RULES: dict[str, FindingRule] = {
    rule.code: rule
    for rule in [
        FindingRule(
            "missing_title",
            0.92,
            "traffic",
            ("Balises title manquantes", "Missing title tags"),
            ("{count} URL(s) sans balise title.", "{count} URL(s) are missing a title tag."),
            (
                "Ajouter un title unique et orienté intention de recherche sur chaque page.",
                "Add a unique title aligned with search intent on every page.",
            ),
        ),
        FindingRule(
            "missing_meta_description",
            0.9,
            "traffic",
            ("Meta descriptions manquantes", "Missing meta descriptions"),
            (
                "{count} URL(s) sans meta description.",
                "{count} URL(s) are missing a meta description.",
            ),
            (
                "Rediger une meta description unique (80-170 caracteres) pour chaque page strategique.",
                "Write a unique meta description (80-170 characters) for every strategic page.",
            ),
        ),
        FindingRule(
            "duplicate_titles",
            0.86,
            "indexation",
            ("Titles dupliques", "Duplicate titles"),
            (
                "{count} groupe(s) de titles dupliques detectes.",
                "{count} duplicate title group(s) detected.",
            ),
            (
                "Rendre chaque title unique pour eviter la cannibalisation SEO.",
                "Make each title unique to avoid SEO cannibalization.",
            ),
        ),
        FindingRule(
            "duplicate_meta_descriptions",
            0.82,
            "traffic",
            ("Meta descriptions dupliquees", "Duplicate meta descriptions"),
            (
                "{count} groupe(s) de meta descriptions dupliquees detectes.",
                "{count} duplicate meta description group(s) detected.",
            ),
            (
                "Differencier les meta descriptions par page et intention utilisateur.",
                "Differentiate meta descriptions by page and user intent.",
            ),
        ),
        FindingRule(
            "title_length_quality",
            0.78,
            "traffic",
            ("Qualite de longueur des titles", "Title length quality issues"),
            (
                "{count} URL(s) ont un title trop court ou trop long.",
                "{count} URL(s) have a title that is too short or too long.",
            ),
            (
                "Ajuster les titles entre 20 et 65 caracteres avec mot-cle principal.",
                "Adjust titles to 20-65 characters with the primary keyword.",
            ),
        ),
        FindingRule(
            "meta_length_quality",
            0.74,
            "traffic",
            ("Qualite de longueur des meta descriptions", "Meta description length quality issues"),
            (
                "{count} URL(s) ont une meta description hors plage recommandee.",
                "{count} URL(s) have a meta description outside the recommended range.",
            ),
            (
                "Ajuster les metas entre 80 et 170 caracteres avec une proposition de valeur claire.",
                "Adjust meta descriptions to 80-170 characters with a clear value proposition.",
            ),
        ),
        FindingRule(
            "h1_structure",
            0.8,
            "indexation",
            ("Structure H1 non conforme", "H1 structure issues"),
            (
                "{count} URL(s) n'ont pas exactement un H1.",
                "{count} URL(s) do not have exactly one H1.",
            ),
            ("Conserver un seul H1 descriptif par page.", "Keep one descriptive H1 per page."),
        ),
        FindingRule(
            "missing_lang",
            0.72,
            "conversion",
            ("Attribut lang manquant", "Missing lang attribute"),
            (
                "{count} URL(s) sans attribut lang explicite.",
                "{count} URL(s) are missing an explicit lang attribute.",
            ),
            (
                "Definir l'attribut lang pour ameliorer accessibilite, comprehension et ciblage.",
                "Set html lang to improve accessibility, relevance, and geo/language targeting.",
            ),
        ),
        FindingRule(
            "language_mismatch",
            0.82,
            "traffic",
            (
                "Langue de page incoherente avec la locale cible",
                "Page language mismatch against selected locale",
            ),
            (
                "{count} URL(s) ont un html[lang] en conflit avec la locale cible.",
                "{count} URL(s) have html[lang] conflicting with selected locale.",
            ),
            (
                "Aligner html[lang], templates et contenu avec la locale cible de l'audit.",
                "Align html[lang], templates, and content with the selected audit locale.",
            ),
        ),
        FindingRule(
            "canonical_consistency",
            0.87,
            "indexation",
            ("Canonicals manquantes ou incoherentes", "Missing or inconsistent canonical tags"),
            (
                "{count} URL(s) avec canonical absente ou multiple.",
                "{count} URL(s) with missing or multiple canonical tags.",
            ),
            (
                "Assurer une canonical unique et coherente avec l'URL preferee.",
                "Ensure one canonical tag per page and align it with the preferred URL.",
            ),
        ),
        FindingRule(
            "canonical_self_reference_mismatch",
            0.84,
            "indexation",
            ("Canonical non auto-referente", "Canonical not self-referencing"),
            (
                "{count} URL(s) ont une canonical differente de l'URL finale.",
                "{count} URL(s) have canonical URLs different from final URLs.",
            ),
            (
                "Faire pointer la canonical vers l'URL canonique finale de la page.",
                "Point canonical to the page final canonical URL.",
            ),
        ),
        FindingRule(
            "noindex_conflicts",
            0.9,
            "indexation",
            ("Conflits d'indexabilite", "Indexability conflicts"),
            (
                "{count} URL(s) repondent correctement mais ne sont pas indexables.",
                "{count} URL(s) return a valid response but are not indexable.",
            ),
            (
                "Supprimer les directives noindex non intentionnelles (meta/x-robots-tag).",
                "Remove unintended noindex directives (meta/x-robots-tag).",
            ),
        ),
        FindingRule(
            "http_errors",
            0.95,
            "traffic",
            ("Erreurs HTTP detectees", "Detected HTTP errors"),
            (
                "{count} URL(s) retournent une erreur ou sont inaccessibles.",
                "{count} URL(s) return an error or are inaccessible.",
            ),
            (
                "Corriger les pages en 4xx/5xx pour restaurer indexation et conversion.",
                "Fix 4xx/5xx pages to recover indexation and conversion.",
            ),
        ),
        FindingRule(
            "slow_pages",
            0.76,
            "conversion",
            ("Temps de reponse eleve", "High response times"),
            (
                "{count} URL(s) depassent ~2200ms de reponse.",
                "{count} URL(s) exceed ~2200ms response time.",
            ),
            (
                "Optimiser backend/caching/poids des pages pour accelerer le rendu.",
                "Optimize backend, caching, and page weight to improve render speed.",
            ),
        ),
        FindingRule(
            "thin_content",
            0.68,
            "traffic",
            ("Contenu insuffisant", "Thin content pages"),
            (
                "{count} URL(s) semblent trop pauvres en contenu editorial.",
                "{count} URL(s) appear to have thin editorial content.",
            ),
            (
                "Enrichir les pages (intention, preuves, FAQ, sections utiles) pour augmenter la profondeur semantique.",
                "Expand page content (intent coverage, proof points, FAQ, useful sections) to increase semantic depth.",
            ),
        ),
        FindingRule(
            "weak_internal_linking",
            0.69,
            "indexation",
            ("Maillage interne insuffisant", "Weak internal linking"),
            (
                "{count} URL(s) ont un maillage interne faible.",
                "{count} URL(s) have weak internal linking.",
            ),
            (
                "Ajouter des liens internes contextuels vers les pages business prioritaires.",
                "Add contextual internal links to priority business pages.",
            ),
        ),
        FindingRule(
            "url_pattern_quality",
            0.71,
            "traffic",
            ("Qualite de structure d'URL a corriger", "URL pattern quality issues"),
            (
                "{count} URL(s) contiennent des patterns peu SEO-friendly (query string, uppercase, underscore, slash multiples).",
                "{count} URL(s) contain non SEO-friendly patterns (query string, uppercase, underscore, multiple slashes).",
            ),
            (
                "Standardiser les URLs en slug lisible, lowercase, sans paramètres inutiles.",
                "Standardize URLs to readable lowercase slugs without unnecessary parameters.",
            ),
        ),
        FindingRule(
            "template_duplicate_pattern",
            0.66,
            "indexation",
            ("Pattern template duplique detecte", "Duplicated template URL pattern detected"),
            (
                "{count} pattern(s) template presentent une repetition elevee.",
                "{count} template pattern(s) show high duplication.",
            ),
            (
                "Consolider les templates similaires et renforcer la differenciation semantique.",
                "Consolidate similar templates and strengthen semantic differentiation.",
            ),
        ),
        FindingRule(
            "missing_structured_data",
            0.73,
            "conversion",
            ("Donnees structurees absentes", "Missing structured data"),
            (
                "{count} URL(s) sans schema.org exploitable.",
                "{count} URL(s) are missing usable schema.org structured data.",
            ),
            (
                "Ajouter des schemas adaptes (Organization, LocalBusiness, Product, FAQ, Breadcrumb).",
                "Implement relevant schemas (Organization, LocalBusiness, Product, FAQ, Breadcrumb).",
            ),
        ),
        FindingRule(
            "missing_open_graph",
            0.67,
            "conversion",
            ("Balises OpenGraph manquantes", "Missing OpenGraph tags"),
            (
                "{count} URL(s) sans metadonnees OpenGraph.",
                "{count} URL(s) are missing OpenGraph metadata.",
            ),
            (
                "Definir au minimum og:title, og:description et og:image sur les pages strategiques.",
                "Define at least og:title, og:description, and og:image on strategic pages.",
            ),
        ),
    ]
}


@dataclass
class Finding:
    """One detected defect across the analyzed page set."""

    code: str
    title: str
    description: str
    severity: Severity
    confidence: float
    impact: Impact
    affected_urls: list[str]
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "confidence": self.confidence,
            "impact": self.impact,
            "affectedUrls": self.affected_urls,
            "recommendation": self.recommendation,
        }


@dataclass
class FindingsResult:
    """Findings sorted by severity plus aggregate crawl metrics."""

    findings: list[Finding] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


def empty_metrics() -> dict[str, Any]:
    """Metrics for an empty crawl."""
    return {
        "analyzedUrls": 0,
        "duplicateTitles": 0,
        "duplicateMetaDescriptions": 0,
        "missingTitle": 0,
        "missingMetaDescription": 0,
        "badTitleLength": 0,
        "badMetaLength": 0,
        "badH1Count": 0,
        "missingLang": 0,
        "languageMismatch": 0,
        "canonicalIssues": 0,
        "canonicalSelfReferenceMismatch": 0,
        "noindexConflicts": 0,
        "urlPatternIssues": 0,
        "httpErrors": 0,
        "slowPages": 0,
        "thinContentPages": 0,
        "contentDepthBuckets": {"veryThin": 0, "thin": 0, "normal": 0, "rich": 0},
        "weakInternalLinking": 0,
        "internalLinkDistribution": {"none": 0, "weak": 0, "strong": 0},
        "templateDuplicatePatterns": 0,
        "missingStructuredDataPages": 0,
        "missingOpenGraphPages": 0,
    }


def severity_from_ratio(affected: int, total: int) -> Severity:
    """Map the share of affected URLs to a severity."""
    ratio = affected / total if total > 0 else 0
    if ratio >= 0.5:
        return "high"
    if ratio >= 0.2:
        return "medium"
    return "low"


def classify_content_depth(word_count: int) -> str:
    if word_count < 120:
        return "veryThin"
    if word_count < 260:
        return "thin"
    if word_count < 900:
        return "normal"
    return "rich"


def classify_internal_links(count: int) -> str:
    if count <= 0:
        return "none"
    if count < 3:
        return "weak"
    return "strong"


def has_url_pattern_issue(url: str) -> bool:
    """Query strings, uppercase, underscores or doubled slashes in the path."""
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    path = parsed.path
    return bool(parsed.query) or bool(re.search(r"[A-Z]", path)) or "_" in path or "//" in path


def extract_template_pattern(url: str) -> str:
    """Reduce a URL to its first one or two path segments."""
    try:
        segments = [s.strip() for s in urlsplit(url).path.split("/") if s.strip()]
    except ValueError:
        return "/"
    if not segments:
        return "/"
    if len(segments) == 1:
        return f"/{segments[0]}/*"
    return f"/{segments[0]}/{segments[1]}/*"


def is_self_referencing_canonical(page: PageSignals) -> bool:
    """Check that the canonical points back at the page's final URL."""
    if not page.canonical or not page.final_url:
        return False
    try:
        canonical = urlsplit(urljoin(page.final_url, page.canonical))
        final = urlsplit(page.final_url)
    except ValueError:
        return False

    def _origin(parts: Any) -> str:
        return f"{parts.scheme}://{parts.netloc}".lower()

    canonical_path = canonical.path.rstrip("/") or "/"
    final_path = final.path.rstrip("/") or "/"
    return (
        _origin(canonical) == _origin(final)
        and canonical_path == final_path
        and canonical.query == final.query
    )


def _language_conflicts(html_lang: str, locale: str) -> bool:
    lang = html_lang.lower()
    return (locale == "fr" and lang.startswith("en")) or (locale == "en" and lang.startswith("fr"))


def analyze_pages(pages: list[PageSignals], locale: str = "fr") -> FindingsResult:
    """
    Run every detection rule over the crawled pages.

    Args:
        pages: Inspected pages (error pages included)
        locale: Audit locale used for texts and the language rule

    Returns:
        FindingsResult with severity-sorted findings and metrics
    """
    if not pages:
        return FindingsResult(findings=[], metrics=empty_metrics())

    total = len(pages)
    affected: dict[str, list[str]] = {code: [] for code in RULES}
    title_groups: OrderedDict[str, list[str]] = OrderedDict()
    meta_groups: OrderedDict[str, list[str]] = OrderedDict()
    template_groups: OrderedDict[str, list[str]] = OrderedDict()
    depth_buckets = {"veryThin": 0, "thin": 0, "normal": 0, "rich": 0}
    link_distribution = {"none": 0, "weak": 0, "strong": 0}

    for page in pages:
        url = page.url
        title = (page.title or "").strip()
        meta = (page.meta_description or "").strip()
        status = page.status_code if page.status_code is not None else 500

        if not title:
            affected["missing_title"].append(url)
        else:
            title_groups.setdefault(title, []).append(url)
            if not TITLE_LENGTH_RANGE[0] <= len(title) <= TITLE_LENGTH_RANGE[1]:
                affected["title_length_quality"].append(url)

        if not meta:
            affected["missing_meta_description"].append(url)
        else:
            meta_groups.setdefault(meta, []).append(url)
            if not META_LENGTH_RANGE[0] <= len(meta) <= META_LENGTH_RANGE[1]:
                affected["meta_length_quality"].append(url)

        if page.h1_count != 1:
            affected["h1_structure"].append(url)

        if not page.html_lang:
            affected["missing_lang"].append(url)
        elif _language_conflicts(page.html_lang, locale):
            affected["language_mismatch"].append(url)

        if not page.canonical or page.canonical_count != 1:
            affected["canonical_consistency"].append(url)
        elif not is_self_referencing_canonical(page):
            affected["canonical_self_reference_mismatch"].append(url)

        if not page.indexable and status < 400:
            affected["noindex_conflicts"].append(url)
        if status >= 400 or page.error:
            affected["http_errors"].append(url)
        if (page.response_time_ms or 0) > SLOW_PAGE_MS:
            affected["slow_pages"].append(url)

        if 0 < page.word_count < THIN_CONTENT_WORDS:
            affected["thin_content"].append(url)
        depth_buckets[classify_content_depth(page.word_count)] += 1

        if 0 < page.internal_link_count < WEAK_LINKING_MIN:
            affected["weak_internal_linking"].append(url)
        link_distribution[classify_internal_links(page.internal_link_count)] += 1

        if not page.has_structured_data:
            affected["missing_structured_data"].append(url)
        if page.open_graph_tag_count == 0:
            affected["missing_open_graph"].append(url)
        if has_url_pattern_issue(url):
            affected["url_pattern_quality"].append(url)

        template_groups.setdefault(extract_template_pattern(url), []).append(url)

    duplicate_titles = [urls for urls in title_groups.values() if len(urls) > 1]
    duplicate_metas = [urls for urls in meta_groups.values() if len(urls) > 1]
    duplicate_templates = [
        urls for urls in template_groups.values() if len(urls) >= TEMPLATE_DUPLICATE_MIN
    ]
    affected["duplicate_titles"] = [url for group in duplicate_titles for url in group]
    affected["duplicate_meta_descriptions"] = [url for group in duplicate_metas for url in group]
    affected["template_duplicate_pattern"] = [url for group in duplicate_templates for url in group]

    # Group rules report the number of groups, page rules the number of pages
    counts = {code: len(urls) for code, urls in affected.items()}
    counts["duplicate_titles"] = len(duplicate_titles)
    counts["duplicate_meta_descriptions"] = len(duplicate_metas)
    counts["template_duplicate_pattern"] = len(duplicate_templates)

    findings: list[Finding] = []
    for code, rule in RULES.items():
        urls = list(dict.fromkeys(affected[code]))
        if not counts[code]:
            continue
        findings.append(
            Finding(
                code=code,
                title=localized(locale, *rule.title),
                description=localized(locale, *rule.description).format(count=counts[code]),
                severity=severity_from_ratio(len(urls), total),
                confidence=max(0.0, min(1.0, rule.confidence)),
                impact=rule.impact,
                affected_urls=urls[:MAX_AFFECTED_URLS],
                recommendation=localized(locale, *rule.recommendation),
            )
        )

    # sorted() is stable, so rule order breaks ties
    findings = sorted(findings, key=lambda f: SEVERITY_RANK[f.severity], reverse=True)

    metrics = {
        "analyzedUrls": total,
        "duplicateTitles": len(duplicate_titles),
        "duplicateMetaDescriptions": len(duplicate_metas),
        "missingTitle": counts["missing_title"],
        "missingMetaDescription": counts["missing_meta_description"],
        "badTitleLength": counts["title_length_quality"],
        "badMetaLength": counts["meta_length_quality"],
        "badH1Count": counts["h1_structure"],
        "missingLang": counts["missing_lang"],
        "languageMismatch": counts["language_mismatch"],
        "canonicalIssues": counts["canonical_consistency"],
        "canonicalSelfReferenceMismatch": counts["canonical_self_reference_mismatch"],
        "noindexConflicts": counts["noindex_conflicts"],
        "urlPatternIssues": counts["url_pattern_quality"],
        "httpErrors": counts["http_errors"],
        "slowPages": counts["slow_pages"],
        "thinContentPages": counts["thin_content"],
        "contentDepthBuckets": depth_buckets,
        "weakInternalLinking": counts["weak_internal_linking"],
        "internalLinkDistribution": link_distribution,
        "templateDuplicatePatterns": len(duplicate_templates),
        "missingStructuredDataPages": counts["missing_structured_data"],
        "missingOpenGraphPages": counts["missing_open_graph"],
    }
    return FindingsResult(findings=findings, metrics=metrics)


_SERVER_SIGNATURES: tuple[tuple[str, str, int], ...] = (
    ("cloudflare", "Cloudflare edge stack", 1),
    ("nginx", "Nginx web stack", 1),
    ("apache", "Apache web stack", 1),
    ("iis", "Microsoft IIS / ASP.NET", 3),
    ("vercel", "Next.js on Vercel", 2),
)

_POWERED_BY_SIGNATURES: tuple[tuple[tuple[str, ...], str, int], ...] = (
    (("next.js",), "Next.js", 4),
    (("node", "express", "nestjs"), "Node.js runtime", 3),
    (("php",), "PHP runtime", 3),
    (("asp.net",), "ASP.NET runtime", 3),
)


def _cookie_stacks(cookie: str) -> list[tuple[str, int]]:
    stacks: list[tuple[str, int]] = []
    if cookie.startswith("wordpress_"):
        stacks.append(("WordPress", 5))
    if "woocommerce" in cookie:
        stacks.append(("WordPress + WooCommerce", 5))
    if "_shopify" in cookie:
        stacks.append(("Shopify", 5))
    if cookie == "phpsessid":
        stacks.append(("PHP runtime", 3))
    if cookie.startswith("__next"):
        stacks.append(("Next.js", 2))
    if "wix" in cookie:
        stacks.append(("Wix", 4))
    return stacks


def infer_tech_fingerprint(
    homepage: PageSignals,
    pages: list[PageSignals],
    locale: str = "fr",
) -> dict[str, Any]:
    """
    Guess the site's stack from headers, cookies and CMS markers.

    Scores accumulate per candidate stack across the homepage and every
    crawled page. Below 3 points the stack is reported as not verifiable.
    """
    scores: dict[str, int] = {}
    evidence: list[str] = []
    saw_server = saw_powered_by = saw_cookies = False

    def _add(stack: str, points: int, proof: str) -> None:
        scores[stack] = scores.get(stack, 0) + points
        if proof not in evidence:
            evidence.append(proof)

    for snapshot in [homepage, *pages]:
        for hint in snapshot.detected_cms_hints:
            _add(hint, 3, f"{hint} hint detected on {snapshot.url}")

        server = (snapshot.server or "").lower()
        if server:
            saw_server = True
            for marker, stack, points in _SERVER_SIGNATURES:
                if marker in server:
                    _add(stack, points, f"Server header includes {snapshot.server}")

        powered_by = (snapshot.x_powered_by or "").lower()
        if powered_by:
            saw_powered_by = True
            for markers, stack, points in _POWERED_BY_SIGNATURES:
                if any(marker in powered_by for marker in markers):
                    _add(stack, points, f"x-powered-by includes {snapshot.x_powered_by}")

        cookies = [c.lower() for c in snapshot.set_cookie_patterns]
        if cookies:
            saw_cookies = True
            matched = False
            for cookie in cookies:
                for stack, points in _cookie_stacks(cookie):
                    scores[stack] = scores.get(stack, 0) + points
                    matched = True
            if matched:
                proof = f"Cookie signatures detected: {', '.join(cookies)}"
                if proof not in evidence:
                    evidence.append(proof)

    unknowns: list[str] = []
    if not saw_server:
        unknowns.append(
            localized(
                locale,
                "Header Server non expose sur la majorite des pages",
                "Server header not disclosed on most pages",
            )
        )
    if not saw_powered_by:
        unknowns.append(localized(locale, "Header x-powered-by masque", "x-powered-by header is hidden"))
    if not saw_cookies:
        unknowns.append(
            localized(
                locale,
                "Aucune signature framework deterministe dans Set-Cookie",
                "No deterministic Set-Cookie framework signature",
            )
        )

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    if not ranked or ranked[0][1] < 3:
        return {
            "primaryStack": localized(locale, "Non verifiable", "Not verifiable"),
            "confidence": 0.2,
            "evidence": [],
            "alternatives": [],
            "unknowns": unknowns[:5],
        }

    best_stack, best_score = ranked[0]
    return {
        "primaryStack": best_stack,
        "confidence": round(max(0.3, min(0.95, best_score / 10)), 2),
        "evidence": evidence[:8],
        "alternatives": [name for name, _ in ranked[1:4]],
        "unknowns": unknowns[:5],
    }
