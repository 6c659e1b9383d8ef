"""
Fakes shared by the crawler tests.
"""

import asyncio
from typing import Dict, List, Optional, Union

from webspider.crawler.fetcher import FetchResult
from webspider.crawler.results import PageResult
from webspider.errors import FetchError, FetchErrorKind
from webspider.utils.config import Config, CrawlerConfig, DatabaseConfig, MonitoringConfig


def make_config(origin_url: str = "http://site.test/", max_depth: int = 2,
                database: Optional[DatabaseConfig] = None, **crawler_overrides) -> Config:
    crawler_overrides.setdefault('respect_robots_txt', False)
    crawler_overrides.setdefault('concurrency_limit', 4)
    crawler_overrides.setdefault('backoff_base', 0)
    return Config(
        crawler=CrawlerConfig(origin_url=origin_url, max_depth=max_depth, **crawler_overrides),
        database=database or DatabaseConfig(),
        monitoring=MonitoringConfig(report_interval=60)
    )


def html_page(links: List[str]) -> bytes:
    anchors = ''.join(f'<a href="{link}">{link}</a>' for link in links)
    return f"<html><head><title>t</title></head><body>{anchors}</body></html>".encode()


Page = Union[List[str], FetchError, str]


class FakeFetcher:
    """
    Serves an in-memory link graph.

    pages maps URL -> list of outbound links, a FetchError, or raw text
    (served as text/plain, used for robots.txt). Unknown URLs are 404s.
    """

    def __init__(self, pages: Dict[str, Page], delay: float = 0.0):
        self.pages = pages
        self.delay = delay
        self.calls: List[str] = []
        self.overlaps: List[str] = []
        self._in_flight = set()

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        if url in self._in_flight:
            self.overlaps.append(url)
        self._in_flight.add(url)
        self.calls.append(url)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            page = self.pages.get(url)
            if page is None:
                error = FetchError(FetchErrorKind.INVALID_RESPONSE, "HTTP 404", 404)
                return FetchResult(url=url, status_code=404, error=error, attempts=1)
            if isinstance(page, FetchError):
                return FetchResult(url=url, status_code=page.status_code or 0,
                                   error=page, attempts=3)
            if isinstance(page, str):
                return FetchResult(url=url, status_code=200, body=page.encode(),
                                   content_type='text/plain', final_url=url, attempts=1)
            return FetchResult(url=url, status_code=200, body=html_page(page),
                               content_type='text/html; charset=utf-8', final_url=url,
                               attempts=1)
        finally:
            self._in_flight.discard(url)

    def page_calls(self) -> List[str]:
        return [url for url in self.calls if not url.endswith('/robots.txt')]

    def get_stats(self) -> Dict[str, int]:
        return {'total_requests': len(self.calls)}


class MemorySink:
    """Sink that keeps results in a list."""

    def __init__(self):
        self.results: List[PageResult] = []
        self.domains = []
        self.stats = {'records': 0}

    async def record(self, result: PageResult) -> bool:
        self.results.append(result)
        self.stats['records'] += 1
        return True

    async def record_domain(self, policy) -> bool:
        self.domains.append(policy)
        return True

    async def summarize(self):
        pass

    async def close(self):
        pass

    def by_url(self) -> Dict[str, PageResult]:
        return {result.url: result for result in self.results}
