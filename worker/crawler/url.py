"""URL normalization and selection utilities for the audit crawler."""

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

from api.exceptions import InvalidTargetError
from worker.crawler.ssrf import assert_safe_http_url
from worker.locale import AuditLocale, locale_from_url_path

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+\-.]*://")

_LOCALE_PRIORITY = {"same": 0, "neutral": 1, "alternate": 2}


async def normalize_audit_url(raw_input: str) -> tuple[str, str]:
    """
    Turn a user-supplied website into a safe absolute URL.

    Args:
        raw_input: Website name or URL as typed by the user

    Returns:
        Tuple of (normalized_url, lowercase hostname)

    Raises:
        InvalidTargetError: If the input is empty, malformed or unsafe
    """
    raw = (raw_input or "").strip()
    if not raw:
        raise InvalidTargetError("Website is required.", reason="missing_website")

    with_scheme = raw if _SCHEME_RE.match(raw) else f"https://{raw}"

    try:
        parsed = urlsplit(with_scheme)
        hostname = parsed.hostname or ""
        # Accessing .port validates the netloc
        _ = parsed.port
    except ValueError as e:
        raise InvalidTargetError("Website URL is invalid.", reason="invalid_url") from e

    if not hostname or "." not in hostname:
        raise InvalidTargetError("Website hostname is invalid.", reason="invalid_hostname")

    path = parsed.path or "/"
    normalized = urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.query, ""))

    await assert_safe_http_url(normalized)
    return normalized, hostname.lower()


def get_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL."""
    parsed = urlsplit(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def strip_fragment(url: str) -> str:
    """Drop the ``#fragment`` part of a URL."""
    parsed = urlsplit(url)
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path or "/", parsed.query, ""))


def resolve_internal_link(href: str, page_url: str) -> str | None:
    """Resolve an anchor href to an absolute same-origin URL, or None."""
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(("mailto:", "tel:", "javascript:")):
        return None
    try:
        absolute = urljoin(page_url, href)
        parsed = urlsplit(absolute)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    if get_origin(absolute) != get_origin(page_url):
        return None
    return strip_fragment(absolute)


def _locale_bucket(url: str, locale: AuditLocale) -> str:
    try:
        path_locale = locale_from_url_path(urlsplit(url).path)
    except ValueError:
        return "neutral"
    if path_locale is None:
        return "neutral"
    return "same" if path_locale == locale else "alternate"


def select_urls_for_locale(
    candidate_urls: list[str],
    homepage_url: str,
    locale: AuditLocale,
    limit: int,
) -> list[str]:
    """
    Order candidate URLs by locale relevance and cap the list.

    Same-locale paths come first, then paths without a locale segment,
    then alternate-locale paths. Order inside each group is preserved.
    The homepage leads its group so it is always analyzed when it fits.
    """
    if limit <= 0:
        return []

    unique: list[str] = []
    seen: set[str] = set()
    for url in [homepage_url, *candidate_urls]:
        if url and url not in seen:
            seen.add(url)
            unique.append(url)

    ranked = sorted(
        enumerate(unique),
        key=lambda item: (_LOCALE_PRIORITY[_locale_bucket(item[1], locale)], item[0]),
    )
    return [url for _, url in ranked[:limit]]
