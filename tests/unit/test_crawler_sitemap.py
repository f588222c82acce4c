"""Tests for sitemap discovery and URL sampling."""

import random

from api.config import AuditAutomationConfig
from tests.fixtures.http import FakeSite
from worker.crawler.fetcher import SafeFetcher
from worker.crawler.sitemap import (
    SitemapDiscovery,
    extract_sitemap_urls_from_robots,
    parse_sitemap_xml,
    pick_url_sample,
)

URLSET = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  {entries}
</urlset>"""

INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  {entries}
</sitemapindex>"""


def urlset(*urls: str) -> str:
    return URLSET.format(entries="".join(f"<url><loc>{u}</loc></url>" for u in urls))


def sitemap_index(*urls: str) -> str:
    return INDEX.format(entries="".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in urls))


class TestParsing:
    """Tests for robots.txt and sitemap XML parsing."""

    def test_robots_sitemap_lines(self) -> None:
        robots = "User-agent: *\n# Sitemap: https://x.com/ignored.xml\nSitemap: /a.xml\nsitemap:/b.xml\nSitemap: /a.xml"

        assert extract_sitemap_urls_from_robots(robots) == ["/a.xml", "/b.xml"]

    def test_urlset(self) -> None:
        parsed = parse_sitemap_xml(urlset("https://e.com/a", "https://e.com/b", "https://e.com/a"), 10)

        assert parsed.urls == ["https://e.com/a", "https://e.com/b"]
        assert parsed.sitemap_urls == []

    def test_index(self) -> None:
        parsed = parse_sitemap_xml(sitemap_index("https://e.com/s1.xml"), 10)

        assert parsed.sitemap_urls == ["https://e.com/s1.xml"]

    def test_caps_and_malformed(self) -> None:
        assert len(parse_sitemap_xml(urlset(*[f"https://e.com/{i}" for i in range(9)]), 3).urls) == 3
        assert parse_sitemap_xml("<urlset><url>", 10).urls == []
        assert parse_sitemap_xml("<html></html>", 10).urls == []


class TestSitemapDiscovery:
    """Tests for SitemapDiscovery.discover."""

    async def test_probes_defaults_without_robots_directive(
        self, public_dns: None, audit_config: AuditAutomationConfig
    ) -> None:
        site = FakeSite()
        site.add_text("https://example.com/robots.txt", "User-agent: *\nDisallow:")
        site.add_text(
            "https://example.com/sitemap_index.xml",
            urlset("https://example.com/a", "https://example.com/b"),
        )
        discovery = SitemapDiscovery(audit_config, SafeFetcher(audit_config, site.transport))

        result = await discovery.discover("https://example.com/fr/")

        assert result.urls == ["https://example.com/a", "https://example.com/b"]
        assert result.sitemap_urls == [
            "https://example.com/sitemap.xml",
            "https://example.com/sitemap_index.xml",
        ]

    async def test_follows_robots_and_nested_indexes(
        self, public_dns: None, audit_config: AuditAutomationConfig
    ) -> None:
        site = FakeSite()
        site.add_text("https://example.com/robots.txt", "Sitemap: https://example.com/main.xml")
        site.add_text("https://example.com/main.xml", sitemap_index("/pages.xml", "/posts.xml"))
        site.add_text("https://example.com/pages.xml", urlset("https://example.com/p1"))
        site.add_text(
            "https://example.com/posts.xml",
            urlset("https://example.com/p1", "https://example.com/blog/1"),
        )
        discovery = SitemapDiscovery(audit_config, SafeFetcher(audit_config, site.transport))

        result = await discovery.discover("https://example.com/")

        assert result.sitemap_urls[0] == "https://example.com/main.xml"
        assert "https://example.com/pages.xml" in result.sitemap_urls
        assert result.urls == ["https://example.com/p1", "https://example.com/blog/1"]

    async def test_unreachable_site_yields_empty_result(
        self, public_dns: None, audit_config: AuditAutomationConfig
    ) -> None:
        discovery = SitemapDiscovery(audit_config, SafeFetcher(audit_config, FakeSite().transport))

        result = await discovery.discover("https://example.com/")

        assert result.urls == []
        assert len(result.sitemap_urls) == 2


class TestPickUrlSample:
    """Tests for pick_url_sample."""

    def test_small_lists_are_returned_whole(self) -> None:
        urls = ["a", "b", "a"]

        picked = pick_url_sample(urls, sample_size=5, analyze_limit=5)

        assert picked == {"sample": ["a", "b"], "deep_analysis": ["a", "b"]}

    def test_head_is_deterministic(self) -> None:
        urls = [f"u{i}" for i in range(20)]

        picked = pick_url_sample(urls, sample_size=4, analyze_limit=7, rng=random.Random(1))

        assert picked["sample"][:2] == ["u0", "u1"]
        assert len(picked["sample"]) == 4
        assert picked["deep_analysis"][:4] == ["u0", "u1", "u2", "u3"]
        assert len(set(picked["deep_analysis"])) == 7

    def test_empty(self) -> None:
        assert pick_url_sample([], 3, 3) == {"sample": [], "deep_analysis": []}
