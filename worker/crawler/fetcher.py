"""Bounded HTTP fetcher that re-validates every redirect hop."""

import codecs
import time
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
import structlog

from api.config import AuditAutomationConfig
from worker.crawler.ssrf import assert_safe_http_url
from worker.guardrails import DeadlineBudget, with_hard_timeout

logger = structlog.get_logger(__name__)

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})

ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class FetchError(Exception):
    """Transport-level failure: redirects, size cap or network error."""


@dataclass
class FetchResult:
    """Result of a safe fetch after following redirects."""

    requested_url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    body: str | None
    ttfb_ms: float
    total_ms: float
    content_length: int | None
    redirect_chain: list[str] = field(default_factory=list)


@dataclass
class _Hop:
    status_code: int
    headers: dict[str, str]
    body: str | None
    ttfb_ms: float
    redirect_to: str | None = None


def parse_content_length(raw: str | None) -> int | None:
    """Parse a Content-Length header value."""
    if not raw:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


class SafeFetcher:
    """GET client with manual redirects, per-hop SSRF checks and a size cap."""

    def __init__(
        self,
        config: AuditAutomationConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._transport = transport

    async def fetch_text(
        self,
        url: str,
        max_bytes: int | None = None,
        budget: DeadlineBudget | None = None,
    ) -> FetchResult:
        """Fetch a URL and read its body up to ``max_bytes``."""
        limit = self.config.text_max_bytes if max_bytes is None else max_bytes
        return await self._fetch(url, read_body=True, max_bytes=limit, budget=budget)

    async def fetch_headers(self, url: str, budget: DeadlineBudget | None = None) -> FetchResult:
        """Fetch a URL without reading the body."""
        return await self._fetch(url, read_body=False, max_bytes=0, budget=budget)

    async def _fetch(
        self,
        target_url: str,
        read_body: bool,
        max_bytes: int,
        budget: DeadlineBudget | None,
    ) -> FetchResult:
        redirect_chain: list[str] = []
        current_url = target_url
        started = time.perf_counter()

        async with httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=False,
            headers={"User-Agent": self.config.user_agent, "Accept": ACCEPT_HEADER},
        ) as client:
            for _hop in range(self.config.max_redirects + 1):
                hop_url = current_url
                # DNS validation shares the hop timeout with the request
                hop = await with_hard_timeout(
                    f"fetch:{hop_url}",
                    self.config.fetch_timeout_ms,
                    lambda: self._checked_request(client, hop_url, read_body, max_bytes),
                    budget,
                )

                if hop.redirect_to:
                    redirect_chain.append(current_url)
                    current_url = hop.redirect_to
                    continue

                return FetchResult(
                    requested_url=target_url,
                    final_url=current_url,
                    status_code=hop.status_code,
                    headers=hop.headers,
                    body=hop.body,
                    ttfb_ms=hop.ttfb_ms,
                    total_ms=(time.perf_counter() - started) * 1000,
                    content_length=parse_content_length(hop.headers.get("content-length")),
                    redirect_chain=redirect_chain,
                )

        raise FetchError(f"Too many redirects (>{self.config.max_redirects}) for {target_url}")

    async def _checked_request(
        self,
        client: httpx.AsyncClient,
        url: str,
        read_body: bool,
        max_bytes: int,
    ) -> _Hop:
        await assert_safe_http_url(url)
        return await self._request_once(client, url, read_body, max_bytes)

    async def _request_once(
        self,
        client: httpx.AsyncClient,
        url: str,
        read_body: bool,
        max_bytes: int,
    ) -> _Hop:
        hop_start = time.perf_counter()
        try:
            async with client.stream("GET", url) as response:
                ttfb_ms = (time.perf_counter() - hop_start) * 1000
                headers = {key.lower(): value for key, value in response.headers.items()}
                location = headers.get("location")

                if response.status_code in REDIRECT_STATUS_CODES and location:
                    return _Hop(
                        status_code=response.status_code,
                        headers=headers,
                        body=None,
                        ttfb_ms=ttfb_ms,
                        redirect_to=urljoin(url, location),
                    )

                body = await self._read_body(response, max_bytes) if read_body else None
                return _Hop(
                    status_code=response.status_code,
                    headers=headers,
                    body=body,
                    ttfb_ms=ttfb_ms,
                )
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {url} failed: {e}") from e

    async def _read_body(self, response: httpx.Response, max_bytes: int) -> str:
        """Stream the body, aborting once ``max_bytes`` is exceeded."""
        try:
            encoding = codecs.lookup(response.encoding or "utf-8").name
        except LookupError:
            encoding = "utf-8"
        decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        total = 0
        chunks: list[str] = []
        async for chunk in response.aiter_bytes():
            if not chunk:
                continue
            total += len(chunk)
            if total > max_bytes:
                raise FetchError(f"Response body exceeds max allowed size ({max_bytes})")
            chunks.append(decoder.decode(chunk))
        chunks.append(decoder.decode(b"", final=True))
        return "".join(chunks)
