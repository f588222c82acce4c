"""Tests for audit URL normalization and locale-aware URL selection."""

import pytest

from api.exceptions import InvalidTargetError
from worker.crawler.url import (
    get_origin,
    normalize_audit_url,
    resolve_internal_link,
    select_urls_for_locale,
    strip_fragment,
)


class TestNormalizeAuditUrl:
    """Tests for normalize_audit_url."""

    @pytest.mark.asyncio
    async def test_defaults_to_https(self, public_dns: None) -> None:
        normalized, hostname = await normalize_audit_url("  Example.COM ")

        assert normalized == "https://example.com/"
        assert hostname == "example.com"

    @pytest.mark.asyncio
    async def test_keeps_path_and_query_drops_fragment(self, public_dns: None) -> None:
        normalized, _ = await normalize_audit_url("http://example.com/fr/services?x=1#top")

        assert normalized == "http://example.com/fr/services?x=1"

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        with pytest.raises(InvalidTargetError) as exc_info:
            await normalize_audit_url("   ")

        assert exc_info.value.message == "Website is required."

    @pytest.mark.asyncio
    async def test_hostname_without_dot(self) -> None:
        with pytest.raises(InvalidTargetError) as exc_info:
            await normalize_audit_url("intranet")

        assert exc_info.value.message == "Website hostname is invalid."

    @pytest.mark.asyncio
    async def test_invalid_port(self) -> None:
        with pytest.raises(InvalidTargetError) as exc_info:
            await normalize_audit_url("https://example.com:99999/")

        assert exc_info.value.message == "Website URL is invalid."

    @pytest.mark.asyncio
    async def test_blocked_target_rejected(self) -> None:
        with pytest.raises(InvalidTargetError):
            await normalize_audit_url("http://printer.local")


class TestLinkHelpers:
    """Tests for origin and internal link helpers."""

    def test_get_origin(self) -> None:
        assert get_origin("https://Example.com:8443/a/b") == "https://example.com:8443"

    def test_strip_fragment(self) -> None:
        assert strip_fragment("https://example.com#top") == "https://example.com/"

    def test_resolve_relative_link(self) -> None:
        assert (
            resolve_internal_link("/contact#form", "https://example.com/fr/")
            == "https://example.com/contact"
        )

    def test_ignores_external_and_special_links(self) -> None:
        page = "https://example.com/"
        assert resolve_internal_link("https://other.com/", page) is None
        assert resolve_internal_link("mailto:hello@example.com", page) is None
        assert resolve_internal_link("tel:+33100000000", page) is None
        assert resolve_internal_link("#section", page) is None


class TestSelectUrlsForLocale:
    """Tests for locale-prioritized URL selection."""

    def test_orders_same_then_neutral_then_alternate(self) -> None:
        candidates = [
            "https://example.com/en/about",
            "https://example.com/blog",
            "https://example.com/fr/services",
            "https://example.com/en/contact",
            "https://example.com/fr/contact",
        ]

        selected = select_urls_for_locale(candidates, "https://example.com/", "fr", limit=10)

        assert selected == [
            "https://example.com/fr/services",
            "https://example.com/fr/contact",
            "https://example.com/",
            "https://example.com/blog",
            "https://example.com/en/about",
            "https://example.com/en/contact",
        ]

    def test_caps_and_deduplicates(self) -> None:
        candidates = ["https://example.com/a", "https://example.com/a", "https://example.com/b"]

        selected = select_urls_for_locale(candidates, "https://example.com/", "en", limit=2)

        assert selected == ["https://example.com/", "https://example.com/a"]

    def test_zero_limit(self) -> None:
        assert select_urls_for_locale(["https://example.com/a"], "https://example.com/", "fr", 0) == []
