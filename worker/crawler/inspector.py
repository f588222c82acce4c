"""Page inspector: turns a fetched HTML response into structured signals."""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from bs4 import BeautifulSoup

from api.config import AuditAutomationConfig
from worker.crawler.fetcher import FetchResult, SafeFetcher
from worker.crawler.url import resolve_internal_link
from worker.guardrails import DeadlineBudget

logger = structlog.get_logger(__name__)

MAX_INTERNAL_LINKS = 30
MAX_H1_TEXTS = 3
MAX_CTA_HINTS = 8
MAX_CTA_LENGTH = 48
MAX_COOKIE_NAMES = 12
TEXT_EXCERPT_LENGTH = 420

CACHE_HEADER_NAMES = (
    "cache-control",
    "cf-cache-status",
    "x-cache",
    "x-cache-hits",
    "age",
    "etag",
    "expires",
    "vary",
)

SECURITY_HEADER_NAMES = (
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
    "referrer-policy",
    "permissions-policy",
    "cross-origin-opener-policy",
    "cross-origin-resource-policy",
    "cross-origin-embedder-policy",
)

# (hint, markers) checked against the lowercased HTML
CMS_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("WordPress", ("wp-content", "wordpress")),
    ("Next.js", ("/_next/", "next.js")),
    ("Shopify", ("shopify",)),
    ("Wix", ("wix",)),
    ("Webflow", ("webflow",)),
    ("Drupal", ("drupal",)),
    ("Joomla", ("joomla",)),
]

ANALYTICS_RE = re.compile(r"gtag\(|google-analytics|ga\(|matomo|plausible|umami")
TAG_MANAGER_RE = re.compile(r"googletagmanager|gtm\.js|datalayer")
PIXEL_RE = re.compile(r"fbq\(|facebook pixel|tiktok pixel|linkedin insight")
COOKIE_BANNER_RE = re.compile(r"cookie|consent|onetrust|didomi|tarteaucitron")
SET_COOKIE_NAME_RE = re.compile(r"(?:^|,)\s*([^=;,\s]+)=")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PageSignals:
    """Structured signals for one inspected page.

    The homepage and every crawled URL share this shape. A page that could
    not be fetched keeps the defaults and carries the failure in ``error``.
    """

    url: str
    final_url: str | None = None
    status_code: int | None = None
    https: bool = False
    redirect_chain: list[str] = field(default_factory=list)
    ttfb_ms: int | None = None
    total_response_ms: int | None = None
    content_length: int | None = None
    server: str | None = None
    x_powered_by: str | None = None
    set_cookie_patterns: list[str] = field(default_factory=list)
    cache_headers: dict[str, str] = field(default_factory=dict)
    security_headers: dict[str, str] = field(default_factory=dict)
    indexable: bool = False
    title: str | None = None
    meta_description: str | None = None
    robots_meta: str | None = None
    x_robots_tag: str | None = None
    canonical_urls: list[str] = field(default_factory=list)
    canonical_count: int = 0
    h1_count: int = 0
    h1_texts: list[str] = field(default_factory=list)
    html_lang: str | None = None
    has_structured_data: bool = False
    open_graph_tags: list[str] = field(default_factory=list)
    twitter_tags: list[str] = field(default_factory=list)
    word_count: int = 0
    detected_cms_hints: list[str] = field(default_factory=list)
    has_analytics: bool = False
    has_tag_manager: bool = False
    has_pixel: bool = False
    has_cookie_banner: bool = False
    has_forms: bool = False
    cta_hints: list[str] = field(default_factory=list)
    text_excerpt: str = ""
    internal_links: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def canonical(self) -> str | None:
        return self.canonical_urls[0] if self.canonical_urls else None

    @property
    def open_graph_tag_count(self) -> int:
        return len(self.open_graph_tags)

    @property
    def internal_link_count(self) -> int:
        return len(self.internal_links)

    @property
    def response_time_ms(self) -> int | None:
        return self.total_response_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the persisted report."""
        return {
            "url": self.url,
            "finalUrl": self.final_url,
            "statusCode": self.status_code,
            "https": self.https,
            "redirectChain": self.redirect_chain,
            "ttfbMs": self.ttfb_ms,
            "totalResponseMs": self.total_response_ms,
            "responseTimeMs": self.response_time_ms,
            "contentLength": self.content_length,
            "server": self.server,
            "xPoweredBy": self.x_powered_by,
            "setCookiePatterns": self.set_cookie_patterns,
            "cacheHeaders": self.cache_headers,
            "securityHeaders": self.security_headers,
            "indexable": self.indexable,
            "title": self.title,
            "metaDescription": self.meta_description,
            "robotsMeta": self.robots_meta,
            "xRobotsTag": self.x_robots_tag,
            "canonical": self.canonical,
            "canonicalUrls": self.canonical_urls,
            "canonicalCount": self.canonical_count,
            "h1Count": self.h1_count,
            "h1Texts": self.h1_texts,
            "htmlLang": self.html_lang,
            "hasStructuredData": self.has_structured_data,
            "openGraphTags": self.open_graph_tags,
            "openGraphTagCount": self.open_graph_tag_count,
            "twitterTags": self.twitter_tags,
            "wordCount": self.word_count,
            "detectedCmsHints": self.detected_cms_hints,
            "hasAnalytics": self.has_analytics,
            "hasTagManager": self.has_tag_manager,
            "hasPixel": self.has_pixel,
            "hasCookieBanner": self.has_cookie_banner,
            "hasForms": self.has_forms,
            "ctaHints": self.cta_hints,
            "textExcerpt": self.text_excerpt,
            "internalLinks": self.internal_links,
            "internalLinkCount": self.internal_link_count,
            "error": self.error,
        }


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        value = " ".join(value)
    text = WHITESPACE_RE.sub(" ", str(value)).strip()
    return text or None


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"name": re.compile(rf"^{name}$", re.IGNORECASE)})
    return _clean(tag.get("content")) if tag else None


def pick_headers(headers: dict[str, str], names: tuple[str, ...]) -> dict[str, str]:
    """Keep only the listed headers that have a value."""
    return {name: headers[name] for name in names if headers.get(name)}


def extract_set_cookie_names(raw: str | None) -> list[str]:
    """Extract lowercased cookie names from a (comma-joined) Set-Cookie header."""
    if not raw:
        return []
    names: list[str] = []
    for match in SET_COOKIE_NAME_RE.finditer(raw):
        name = match.group(1).strip().lower()
        if name and name not in names:
            names.append(name)
    return names[:MAX_COOKIE_NAMES]


def detect_cms_hints(lower_html: str) -> list[str]:
    """Match the HTML against known platform markers."""
    return [hint for hint, markers in CMS_MARKERS if any(m in lower_html for m in markers)]


def _cta_hints(soup: BeautifulSoup) -> list[str]:
    hints: list[str] = []
    for node in soup.find_all(["a", "button", "input"]):
        if node.name == "input" and (node.get("type") or "").lower() not in ("submit", "button"):
            continue
        raw = _clean(node.get_text(" ")) or _clean(node.get("value")) or _clean(node.get("aria-label"))
        if not raw or len(raw) > MAX_CTA_LENGTH or raw in hints:
            continue
        hints.append(raw)
        if len(hints) >= MAX_CTA_HINTS:
            break
    return hints


def _internal_links(soup: BeautifulSoup, page_url: str) -> list[str]:
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        resolved = resolve_internal_link(str(anchor["href"]), page_url)
        if resolved and resolved not in links:
            links.append(resolved)
            if len(links) >= MAX_INTERNAL_LINKS:
                break
    return links


def inspect_response(fetch_result: FetchResult, url: str | None = None) -> PageSignals:
    """
    Parse a fetched response into page signals.

    Args:
        fetch_result: Response returned by the safe fetcher
        url: The URL originally requested (defaults to the fetch target)

    Returns:
        PageSignals for the page
    """
    html = fetch_result.body or ""
    lower_html = html.lower()
    headers = fetch_result.headers
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = _clean(title_tag.get_text()) if title_tag else None
    robots_meta = _meta_content(soup, "robots")
    x_robots_tag = headers.get("x-robots-tag")

    canonical_tags = soup.find_all("link", rel="canonical")
    canonical_urls = [href for tag in canonical_tags if (href := _clean(tag.get("href")))]

    h1_tags = soup.find_all("h1")
    h1_texts = [text for tag in h1_tags if (text := _clean(tag.get_text(" ")))][:MAX_H1_TEXTS]

    html_tag = soup.find("html")
    html_lang = _clean(html_tag.get("lang")) if html_tag else None

    open_graph_tags = [
        prop
        for tag in soup.find_all("meta", attrs={"property": re.compile(r"^og:")})
        if (prop := _clean(tag.get("property")))
    ]
    twitter_tags = [
        name
        for tag in soup.find_all("meta", attrs={"name": re.compile(r"^twitter:")})
        if (name := _clean(tag.get("name")))
    ]

    has_structured_data = soup.find("script", attrs={"type": "application/ld+json"}) is not None
    has_forms = soup.find("form") is not None
    cta_hints = _cta_hints(soup)
    internal_links = _internal_links(soup, fetch_result.final_url)

    # Visible text only
    for node in soup(["script", "style", "noscript", "template"]):
        node.decompose()
    text_root = soup.body or soup
    text = WHITESPACE_RE.sub(" ", text_root.get_text(" ")).strip()

    indexable = "noindex" not in (robots_meta or "").lower() and "noindex" not in (
        x_robots_tag or ""
    ).lower()

    return PageSignals(
        url=url or fetch_result.requested_url,
        final_url=fetch_result.final_url,
        status_code=fetch_result.status_code,
        https=fetch_result.final_url.startswith("https://"),
        redirect_chain=list(fetch_result.redirect_chain),
        ttfb_ms=round(fetch_result.ttfb_ms),
        total_response_ms=round(fetch_result.total_ms),
        content_length=fetch_result.content_length,
        server=headers.get("server"),
        x_powered_by=headers.get("x-powered-by"),
        set_cookie_patterns=extract_set_cookie_names(headers.get("set-cookie")),
        cache_headers=pick_headers(headers, CACHE_HEADER_NAMES),
        security_headers=pick_headers(headers, SECURITY_HEADER_NAMES),
        indexable=indexable,
        title=title,
        meta_description=_meta_content(soup, "description"),
        robots_meta=robots_meta,
        x_robots_tag=x_robots_tag,
        canonical_urls=canonical_urls,
        canonical_count=len(canonical_tags),
        h1_count=len(h1_tags),
        h1_texts=h1_texts,
        html_lang=html_lang,
        has_structured_data=has_structured_data,
        open_graph_tags=open_graph_tags,
        twitter_tags=twitter_tags,
        word_count=len(text.split()) if text else 0,
        detected_cms_hints=detect_cms_hints(lower_html),
        has_analytics=bool(ANALYTICS_RE.search(lower_html)),
        has_tag_manager=bool(TAG_MANAGER_RE.search(lower_html)),
        has_pixel=bool(PIXEL_RE.search(lower_html)),
        has_cookie_banner=bool(COOKIE_BANNER_RE.search(lower_html)),
        has_forms=has_forms,
        cta_hints=cta_hints,
        text_excerpt=text[:TEXT_EXCERPT_LENGTH],
        internal_links=internal_links,
    )


OnUrlAnalyzed = Callable[[PageSignals, int, int], Awaitable[None]]


class PageInspector:
    """Fetches and inspects pages for the audit crawl."""

    def __init__(self, config: AuditAutomationConfig, fetcher: SafeFetcher):
        self.config = config
        self.fetcher = fetcher

    async def inspect_homepage(
        self, url: str, budget: DeadlineBudget | None = None
    ) -> PageSignals:
        """Fetch and inspect the homepage. Fetch failures propagate."""
        response = await self.fetcher.fetch_text(url, self.config.html_max_bytes, budget=budget)
        return inspect_response(response, url)

    async def inspect_url(self, url: str, budget: DeadlineBudget | None = None) -> PageSignals:
        """Fetch and inspect one crawled URL, recording failures as data."""
        try:
            response = await self.fetcher.fetch_text(url, self.config.html_max_bytes, budget=budget)
            return inspect_response(response, url)
        except Exception as e:
            logger.debug("url_inspection_failed", url=url, error=str(e))
            return PageSignals(url=url, error=str(e))

    async def analyze_urls(
        self,
        urls: list[str],
        on_url_analyzed: OnUrlAnalyzed | None = None,
        budget: DeadlineBudget | None = None,
    ) -> list[PageSignals]:
        """
        Inspect URLs with a bounded worker pool.

        Workers pull the next index from a shared cursor. Results keep the
        input order; ``on_url_analyzed`` fires in completion order.
        """
        if not urls:
            return []

        total = len(urls)
        concurrency = min(self.config.url_analyze_concurrency, total)
        results: list[PageSignals | None] = [None] * total
        cursor = 0
        done = 0

        async def worker() -> None:
            nonlocal cursor, done
            while cursor < total:
                index = cursor
                cursor += 1
                result = await self.inspect_url(urls[index], budget=budget)
                results[index] = result
                done += 1
                if on_url_analyzed:
                    await on_url_analyzed(result, done, total)

        await asyncio.gather(*(worker() for _ in range(concurrency)))
        return [result for result in results if result is not None]
