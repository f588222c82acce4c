"""Tests for audit locale resolution."""

from worker.locale import (
    locale_from_accept_language,
    locale_from_url_path,
    localized,
    resolve_audit_locale,
    resolve_request_locale,
)


class TestResolveAuditLocale:
    """Tests for resolve_audit_locale."""

    def test_supported_tags(self) -> None:
        assert resolve_audit_locale("en") == "en"
        assert resolve_audit_locale("EN-gb") == "en"
        assert resolve_audit_locale("fr-CA") == "fr"

    def test_fallback(self) -> None:
        assert resolve_audit_locale(None) == "fr"
        assert resolve_audit_locale("de") == "fr"
        assert resolve_audit_locale("de", fallback="en") == "en"


class TestLocaleFromHeaders:
    """Tests for path and Accept-Language detection."""

    def test_url_path_segment(self) -> None:
        assert locale_from_url_path("/en/pricing") == "en"
        assert locale_from_url_path("/FR") == "fr"
        assert locale_from_url_path("/entreprise") is None
        assert locale_from_url_path(None) is None

    def test_accept_language(self) -> None:
        assert locale_from_accept_language("en-US,en;q=0.9,fr;q=0.8") == "en"
        assert locale_from_accept_language("de-DE, fr;q=0.7") == "fr"
        assert locale_from_accept_language("de-DE") is None


class TestResolveRequestLocale:
    """Tests for request locale precedence."""

    def test_explicit_wins(self) -> None:
        assert resolve_request_locale("en", referer="https://site.fr/fr/audit") == "en"

    def test_referer_before_accept_language(self) -> None:
        assert (
            resolve_request_locale(None, "https://site.fr/en/audit", "fr-FR,fr;q=0.9") == "en"
        )

    def test_accept_language_then_default(self) -> None:
        assert resolve_request_locale(None, "https://site.fr/audit", "en-GB") == "en"
        assert resolve_request_locale(None, None, None) == "fr"

    def test_localized(self) -> None:
        assert localized("en", "Bonjour", "Hello") == "Hello"
        assert localized("fr", "Bonjour", "Hello") == "Bonjour"
