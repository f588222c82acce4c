"""Canned HTTP sites for crawler tests."""

from collections.abc import Callable

import httpx

Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeSite:
    """URL-keyed responses served through ``httpx.MockTransport``.

    Unknown URLs answer 404. Every request is recorded in ``requests``.
    """

    def __init__(self, routes: dict[str, Route] | None = None):
        self.routes: dict[str, Route] = dict(routes or {})
        self.requests: list[str] = []

    def add_html(self, url: str, html: str, headers: dict[str, str] | None = None) -> None:
        self.routes[url] = httpx.Response(
            200,
            text=html,
            headers={"content-type": "text/html; charset=utf-8", **(headers or {})},
        )

    def add_text(self, url: str, text: str, status_code: int = 200) -> None:
        self.routes[url] = httpx.Response(status_code, text=text)

    def redirect(self, url: str, location: str, status_code: int = 302) -> None:
        self.routes[url] = httpx.Response(status_code, headers={"location": location})

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return httpx.Response(
            route.status_code,
            headers=route.headers,
            content=route.content,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def page_html(
    title: str | None = "Example page",
    description: str | None = "A clear description of the page content for search engines.",
    h1: str | None = "Main heading",
    canonical: str | None = None,
    lang: str | None = "fr",
    body: str = "",
    links: list[str] | None = None,
    extra_head: str = "",
) -> str:
    """Build a small HTML document with the usual SEO tags."""
    head = []
    if title is not None:
        head.append(f"<title>{title}</title>")
    if description is not None:
        head.append(f'<meta name="description" content="{description}">')
    if canonical is not None:
        head.append(f'<link rel="canonical" href="{canonical}">')
    head.append(extra_head)
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links or [])
    heading = f"<h1>{h1}</h1>" if h1 is not None else ""
    lang_attr = f' lang="{lang}"' if lang else ""
    return (
        f"<!doctype html><html{lang_attr}><head>{''.join(head)}</head>"
        f"<body>{heading}<main>{body}</main><nav>{anchors}</nav></body></html>"
    )
