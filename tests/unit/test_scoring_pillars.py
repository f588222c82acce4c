"""Tests for pillar scoring."""

from worker.crawler.inspector import PageSignals
from worker.scoring.pillars import MAX_QUICK_WINS, QUICK_WINS, clamp_score, compute_scores


def strong_homepage(**overrides) -> PageSignals:
    fields = {
        "url": "https://example.com/",
        "final_url": "https://example.com/",
        "status_code": 200,
        "https": True,
        "indexable": True,
        "title": "Agence web",
        "meta_description": "Sites rapides",
        "canonical_urls": ["https://example.com/"],
        "canonical_count": 1,
        "h1_count": 1,
        "html_lang": "fr",
        "has_structured_data": True,
        "open_graph_tags": ["og:title"],
        "has_forms": True,
        "has_cookie_banner": True,
        "ttfb_ms": 200,
        "total_response_ms": 500,
        "content_length": 40_000,
    }
    fields.update(overrides)
    return PageSignals(**fields)


SITEMAPS = ["https://example.com/sitemap.xml"]


class TestComputeScores:
    """Tests for compute_scores."""

    def test_perfect_homepage(self) -> None:
        score = compute_scores(strong_homepage(), SITEMAPS, [])

        assert score.pillar_scores == {
            "seo": 100,
            "performance": 100,
            "technical": 100,
            "trust": 100,
            "conversion": 100,
        }
        assert score.quick_wins == []

    def test_missing_homepage_seo_tags(self) -> None:
        homepage = strong_homepage(
            title=None, meta_description=None, h1_count=0, canonical_urls=[], canonical_count=0
        )

        score = compute_scores(homepage, SITEMAPS, [], "en")

        assert score.pillar_scores["seo"] == 47
        assert score.quick_wins == [
            QUICK_WINS["home_title"][1],
            QUICK_WINS["home_meta"][1],
            QUICK_WINS["home_h1"][1],
            QUICK_WINS["home_canonical"][1],
        ]

    def test_performance_and_technical_penalties(self) -> None:
        homepage = strong_homepage(
            ttfb_ms=1200,
            total_response_ms=2500,
            content_length=900_000,
            https=False,
            status_code=503,
        )

        score = compute_scores(homepage, [], [])

        assert score.pillar_scores["performance"] == 60
        assert score.pillar_scores["technical"] == 30

    def test_sampled_coverage_penalties(self) -> None:
        sampled = [
            PageSignals(url="https://example.com/a", status_code=200, indexable=True),
            strong_homepage(url="https://example.com/b"),
        ]

        score = compute_scores(strong_homepage(), SITEMAPS, sampled)

        # Half the sample misses title (10), meta (9), h1 (6), canonical (6), lang (5)
        assert score.pillar_scores["seo"] == 100 - 10 - 9 - 6 - 6 - 5
        coverage = score.key_checks["seo"]["sampledCoverage"]
        assert coverage["missingTitle"] == 1
        assert coverage["canonicalIssues"] == 1

    def test_indexability_penalty(self) -> None:
        sampled = [
            strong_homepage(url="https://example.com/a", indexable=False),
            strong_homepage(url="https://example.com/b", status_code=404),
            strong_homepage(url="https://example.com/c"),
            strong_homepage(url="https://example.com/d"),
        ]

        score = compute_scores(strong_homepage(), SITEMAPS, sampled)

        assert score.pillar_scores["technical"] == 80
        assert score.key_checks["sitemap"]["indexabilityIssues"] == 2

    def test_trust_and_conversion(self) -> None:
        homepage = strong_homepage(
            has_structured_data=False, open_graph_tags=[], has_forms=False, has_cookie_banner=False
        )

        score = compute_scores(homepage, SITEMAPS, [])

        assert score.pillar_scores["trust"] == 80
        assert score.pillar_scores["conversion"] == 75

    def test_quick_wins_capped(self) -> None:
        homepage = PageSignals(url="https://example.com/")

        score = compute_scores(homepage, [], [PageSignals(url="https://example.com/a")])

        assert len(score.quick_wins) == MAX_QUICK_WINS
        assert len(set(score.quick_wins)) == MAX_QUICK_WINS

    def test_is_deterministic(self) -> None:
        homepage = strong_homepage(title=None, ttfb_ms=900)
        sampled = [PageSignals(url="https://example.com/a"), strong_homepage(url="https://example.com/b")]

        first = compute_scores(homepage, SITEMAPS, sampled)
        second = compute_scores(homepage, SITEMAPS, sampled)

        assert first.to_dict() == second.to_dict()

    def test_key_checks_shape(self) -> None:
        score = compute_scores(strong_homepage(), SITEMAPS, [])

        assert score.key_checks["performance"]["cwv"] == {
            "lcp": "pending",
            "cls": "pending",
            "inp": "pending",
        }
        assert score.key_checks["sitemap"]["sitemapCount"] == 1
        assert score.key_checks["accessibility"]["https"] is True


def test_clamp_score() -> None:
    assert clamp_score(-5) == 0
    assert clamp_score(120) == 100
    assert clamp_score(47.4) == 47
