"""Sitemap discovery via robots.txt and sitemap/sitemap-index documents."""

import random
import re
from collections import deque
from dataclasses import dataclass, field
from urllib.parse import urljoin
from xml.etree import ElementTree as ET

import structlog

from api.config import AuditAutomationConfig
from worker.crawler.fetcher import SafeFetcher
from worker.crawler.url import get_origin
from worker.guardrails import DeadlineBudget

logger = structlog.get_logger(__name__)

# Hard cap on sitemap documents fetched per discovery
MAX_VISITED_SITEMAPS = 100

DEFAULT_SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml")

_ROBOTS_SITEMAP_RE = re.compile(r"^sitemap\s*:\s*(\S+)$", re.IGNORECASE)


@dataclass
class ParsedSitemap:
    """Leaf URLs and nested sitemap references found in one document."""

    urls: list[str] = field(default_factory=list)
    sitemap_urls: list[str] = field(default_factory=list)


@dataclass
class SitemapDiscoveryResult:
    """Every sitemap visited and the deduplicated URLs they listed."""

    sitemap_urls: list[str]
    urls: list[str]


def extract_sitemap_urls_from_robots(content: str) -> list[str]:
    """Collect ``Sitemap:`` directives from robots.txt, in order, deduplicated."""
    urls: list[str] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _ROBOTS_SITEMAP_RE.match(line)
        if match and match.group(1) not in urls:
            urls.append(match.group(1).strip())
    return urls


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _read_locs(root: ET.Element, entry_name: str, max_urls: int) -> list[str]:
    found: list[str] = []
    for entry in root:
        if _local_name(entry.tag) != entry_name:
            continue
        for child in entry:
            if _local_name(child.tag) == "loc" and child.text and child.text.strip():
                loc = child.text.strip()
                if loc not in found:
                    found.append(loc)
                break
        if len(found) >= max_urls:
            break
    return found


def parse_sitemap_xml(xml_content: str, max_urls: int) -> ParsedSitemap:
    """
    Parse a ``urlset`` or ``sitemapindex`` document.

    Malformed XML yields an empty result instead of raising.
    """
    try:
        root = ET.fromstring(xml_content.strip().encode("utf-8"))
    except ET.ParseError:
        return ParsedSitemap()

    name = _local_name(root.tag)
    if name == "urlset":
        return ParsedSitemap(urls=_read_locs(root, "url", max_urls))
    if name == "sitemapindex":
        return ParsedSitemap(sitemap_urls=_read_locs(root, "sitemap", max_urls))
    return ParsedSitemap()


def _head_and_random(urls: list[str], limit: int, rng: random.Random) -> list[str]:
    if limit <= 0:
        return []
    if len(urls) <= limit:
        return list(urls)
    head_count = max(1, -(-limit // 2))
    head = urls[:head_count]
    tail = urls[head_count:]
    return head + rng.sample(tail, min(len(tail), limit - head_count))


def pick_url_sample(
    urls: list[str],
    sample_size: int,
    analyze_limit: int,
    rng: random.Random | None = None,
) -> dict[str, list[str]]:
    """
    Pick a light sample and a deeper analysis set from a URL list.

    Each pick keeps the first half of the list (rounded up) and fills
    the rest with a random draw from the remainder.
    """
    unique = list(dict.fromkeys(urls))
    if not unique:
        return {"sample": [], "deep_analysis": []}
    rng = rng or random.Random()
    return {
        "sample": _head_and_random(unique, sample_size, rng),
        "deep_analysis": _head_and_random(unique, analyze_limit, rng),
    }


class SitemapDiscovery:
    """Breadth-first sitemap expansion seeded from robots.txt."""

    def __init__(self, config: AuditAutomationConfig, fetcher: SafeFetcher):
        self.config = config
        self.fetcher = fetcher

    async def _robots_candidates(self, origin: str, budget: DeadlineBudget | None) -> list[str]:
        robots_url = f"{origin}/robots.txt"
        try:
            response = await self.fetcher.fetch_text(
                robots_url, self.config.text_max_bytes, budget=budget
            )
        except Exception as e:
            logger.warning("robots_discovery_failed", origin=origin, error=str(e))
            return []

        if response.status_code >= 400 or not response.body:
            return []
        return [urljoin(origin, raw) for raw in extract_sitemap_urls_from_robots(response.body)]

    async def discover(
        self,
        base_url: str,
        budget: DeadlineBudget | None = None,
    ) -> SitemapDiscoveryResult:
        """
        Discover sitemap documents and the URLs they list.

        Args:
            base_url: Any URL on the audited site
            budget: Optional deadline shared with the caller

        Returns:
            SitemapDiscoveryResult with visited sitemaps and discovered URLs
        """
        origin = get_origin(base_url)
        max_urls = self.config.sitemap_max_urls

        candidates = await self._robots_candidates(origin, budget)
        for path in DEFAULT_SITEMAP_PATHS:
            default_url = f"{origin}{path}"
            if default_url not in candidates:
                candidates.append(default_url)

        queue: deque[str] = deque(candidates)
        visited: set[str] = set()
        sitemap_urls: list[str] = []
        discovered: dict[str, None] = {}

        while queue and len(visited) < MAX_VISITED_SITEMAPS and len(discovered) < max_urls:
            sitemap_url = queue.popleft()
            if sitemap_url in visited:
                continue
            visited.add(sitemap_url)
            sitemap_urls.append(sitemap_url)

            try:
                response = await self.fetcher.fetch_text(
                    sitemap_url, self.config.text_max_bytes, budget=budget
                )
            except Exception as e:
                logger.warning("sitemap_fetch_failed", sitemap_url=sitemap_url, error=str(e))
                continue

            if response.status_code >= 400 or not response.body:
                continue

            parsed = parse_sitemap_xml(response.body, max_urls)
            for url in parsed.urls:
                if len(discovered) >= max_urls:
                    break
                discovered[url] = None
            for nested in parsed.sitemap_urls:
                absolute = urljoin(sitemap_url, nested)
                if absolute not in visited:
                    queue.append(absolute)

        logger.info(
            "sitemap_discovery_complete",
            origin=origin,
            sitemaps_visited=len(sitemap_urls),
            urls_found=len(discovered),
        )
        return SitemapDiscoveryResult(sitemap_urls=sitemap_urls, urls=list(discovered)[:max_urls])
