"""Audit locale helpers shared by the API and the audit engine."""

import re
from typing import Literal
from urllib.parse import urlparse

AuditLocale = Literal["fr", "en"]

DEFAULT_LOCALE: AuditLocale = "fr"

_PATH_LOCALE_RE = re.compile(r"(?:^|/)(fr|en)(?:/|$)", re.IGNORECASE)


def resolve_audit_locale(value: str | None, fallback: AuditLocale = DEFAULT_LOCALE) -> AuditLocale:
    """Map a free-form language tag onto a supported locale."""
    if not value:
        return fallback
    normalized = value.strip().lower()
    if normalized == "en" or normalized.startswith("en-"):
        return "en"
    if normalized == "fr" or normalized.startswith("fr-"):
        return "fr"
    return fallback


def locale_from_url_path(path: str | None) -> AuditLocale | None:
    """Find a ``/fr/`` or ``/en/`` segment in a URL path."""
    if not path:
        return None
    match = _PATH_LOCALE_RE.search(path)
    if not match:
        return None
    return "en" if match.group(1).lower() == "en" else "fr"


def locale_from_accept_language(header: str | None) -> AuditLocale | None:
    """Pick the first supported language from an Accept-Language header."""
    if not header:
        return None
    for part in header.split(","):
        tag = part.split(";")[0].strip().lower()
        if tag.startswith("en"):
            return "en"
        if tag.startswith("fr"):
            return "fr"
    return None


def resolve_request_locale(
    explicit: str | None,
    referer: str | None = None,
    accept_language: str | None = None,
) -> AuditLocale:
    """Resolve the audit locale for an incoming request.

    Order: explicit value, locale segment of the referring page,
    Accept-Language, then the default.
    """
    if explicit and explicit.strip():
        return resolve_audit_locale(explicit)

    if referer:
        try:
            from_path = locale_from_url_path(urlparse(referer).path)
        except ValueError:
            from_path = None
        if from_path:
            return from_path

    return locale_from_accept_language(accept_language) or DEFAULT_LOCALE


def localized(locale: str, fr: str, en: str) -> str:
    """Return the text matching ``locale`` (French unless English)."""
    return en if locale == "en" else fr
