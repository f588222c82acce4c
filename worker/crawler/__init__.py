"""Crawler package: target validation, safe fetching, sitemaps and page signals."""

# Lazy imports to avoid requiring all dependencies at import time
# Use explicit imports when needed:
# from worker.crawler.ssrf import assert_public_hostname, assert_safe_http_url
# from worker.crawler.url import normalize_audit_url, select_urls_for_locale
# from worker.crawler.fetcher import SafeFetcher, FetchError
# from worker.crawler.sitemap import SitemapDiscovery, pick_url_sample
# from worker.crawler.inspector import PageInspector, PageSignals
