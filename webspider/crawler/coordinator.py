"""
Crawl coordinator: owns the worker pool and drives tasks from the frontier
through the robots gate, the fetcher and the link extractor to the sink.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import FetchError, FetchErrorKind
from ..storage.database import DatabaseManager
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor
from .fetcher import WebFetcher
from .parser import LinkExtractor, normalize_url
from .results import CrawlStatus, PageResult
from .robots import RobotsPolicyCache
from .url_frontier import CrawlTask, URLFrontier


@dataclass
class CrawlStats:
    """Statistics for a crawl run."""
    start_time: float
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    sink_errors: int = 0
    links_discovered: int = 0
    end_time: Optional[float] = None
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return self.fetched + self.skipped + self.failed

    @property
    def elapsed_time(self) -> float:
        return (self.end_time or time.monotonic()) - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.processed / elapsed_minutes if elapsed_minutes > 0 else 0

    def to_dict(self) -> Dict:
        return {
            'fetched': self.fetched,
            'skipped': self.skipped,
            'failed': self.failed,
            'sink_errors': self.sink_errors,
            'links_discovered': self.links_discovered,
            'elapsed_time': self.elapsed_time,
            'cancelled': self.cancelled
        }


class CrawlCoordinator:
    """
    Runs a depth-bounded breadth-first crawl with a fixed pool of workers.

    Per task: Queued -> Claimed -> RobotsDenied | Fetched | FetchFailed ->
    Recorded. The result is handed to the sink before the frontier's live
    counter is decremented, so every processed URL is recorded exactly once.

    Components may be injected (tests do); anything left as None is built
    from the config in initialize().
    """

    def __init__(self, config: Config,
                 frontier: Optional[URLFrontier] = None,
                 fetcher: Optional[WebFetcher] = None,
                 robots: Optional[RobotsPolicyCache] = None,
                 extractor: Optional[LinkExtractor] = None,
                 sink: Optional[DatabaseManager] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.crawler_config = config.crawler
        self.logger = logging.getLogger(__name__)

        self.cancel_event = asyncio.Event()

        self.frontier = frontier
        self.fetcher = fetcher
        self.robots = robots
        self.extractor = extractor
        self.sink = sink
        self.monitor = monitor

        self.stats = CrawlStats(start_time=time.monotonic())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self._owns_fetcher = fetcher is None
        self._owns_sink = sink is None
        self._stop_reason: Optional[str] = None
        self._initialized = False

    async def initialize(self):
        """Build any component that was not injected."""
        if self._initialized:
            return
        crawler = self.crawler_config

        if self.monitor is None:
            self.monitor = CrawlerMonitor(
                enable_server=self.config.monitoring.metrics_enabled,
                prometheus_port=self.config.monitoring.prometheus_port
            )
            self.monitor.start_server()

        if self.frontier is None:
            self.frontier = URLFrontier(crawler.max_depth)

        if self.fetcher is None:
            self.fetcher = WebFetcher(
                user_agent=crawler.user_agent,
                request_timeout=crawler.request_timeout,
                max_retries=crawler.max_retries,
                backoff_base=crawler.backoff_base,
                max_redirects=crawler.max_redirects,
                max_content_size=crawler.max_content_size,
                connection_limit=crawler.concurrency_limit * 2,
                cancel_event=self.cancel_event
            )
            await self.fetcher.start()

        if self.sink is None:
            self.sink = DatabaseManager(self.config.database, monitor=self.monitor)
            await self.sink.initialize()

        if self.robots is None:
            self.robots = RobotsPolicyCache(
                self.fetcher,
                user_agent=crawler.user_agent,
                respect_robots_txt=crawler.respect_robots_txt,
                cache_ttl=crawler.robots_cache_ttl,
                default_delay=crawler.politeness_delay,
                policy_listener=self.sink.record_domain,
                monitor=self.monitor
            )

        if self.extractor is None:
            self.extractor = LinkExtractor(
                allowed_domains=crawler.allowed_domains,
                blocked_domains=crawler.blocked_domains
            )

        self._initialized = True
        self.logger.info("Crawl coordinator initialized")

    async def run(self, max_pages: Optional[int] = None,
                  max_duration: Optional[float] = None) -> CrawlStats:
        """
        Crawl from the origin URL until the frontier is exhausted or the
        crawl is cancelled.

        Args:
            max_pages: Stop after this many processed pages (None for unlimited)
            max_duration: Stop after this many seconds (None for unlimited)

        Returns:
            Final crawl statistics
        """
        if self.is_running:
            raise RuntimeError("Crawl is already running")

        await self.initialize()

        self.is_running = True
        self.stats = CrawlStats(start_time=time.monotonic())

        seed = CrawlTask(url=normalize_url(self.crawler_config.origin_url), depth=0)
        if not await self.frontier.offer(seed):
            self.logger.warning(f"Origin URL was not admitted: {seed.url}")
            await self.frontier.close()

        num_workers = self.crawler_config.concurrency_limit
        self.workers = [
            asyncio.create_task(self._worker(f"worker-{i}", max_pages))
            for i in range(num_workers)
        ]
        self.monitor.update_active_workers(num_workers)
        self.logger.info(f"Started crawling {seed.url} with {num_workers} workers "
                         f"(max depth {self.crawler_config.max_depth})")

        stats_task = asyncio.create_task(self._stats_reporter())
        deadline_task = None
        if max_duration:
            deadline_task = asyncio.create_task(self._deadline(max_duration))

        try:
            await asyncio.gather(*self.workers)
        finally:
            for task in (stats_task, deadline_task):
                if task is not None:
                    task.cancel()
            await asyncio.gather(stats_task, *([deadline_task] if deadline_task else []),
                                 return_exceptions=True)
            self.monitor.update_active_workers(0)
            self.stats.end_time = time.monotonic()
            self.stats.cancelled = self.cancel_event.is_set()
            self.is_running = False
            self.workers = []

        await self._log_final_stats()
        return self.stats

    async def cancel(self, reason: str = "cancel requested"):
        """
        Stop the crawl cooperatively.

        The frontier closes at once so no new work is claimed or admitted;
        workers finish (or time out) their in-flight task and exit.
        """
        if not self.cancel_event.is_set():
            self._stop_reason = reason
            self.logger.info(f"Stopping crawl: {reason}")
            self.cancel_event.set()
        if self.frontier is not None:
            await self.frontier.close()

    async def _worker(self, worker_id: str, max_pages: Optional[int] = None):
        """Worker coroutine that processes tasks from the frontier."""
        log = get_crawler_logger(__name__, worker=worker_id)
        log.debug(f"Worker {worker_id} started")

        while not self.cancel_event.is_set():
            task = await self.frontier.take()
            if task is None:
                break

            try:
                result = await self._process_task(task, log)
            except Exception as e:
                log.error(f"Unexpected error processing {task.url}: {e}", exc_info=True)
                result = PageResult(
                    url=task.url,
                    depth=task.depth,
                    status=CrawlStatus.FETCH_FAILED,
                    error=FetchError(FetchErrorKind.INVALID_RESPONSE, f"Unexpected error: {e}")
                )

            try:
                await self._record(result)
            except Exception as e:
                self.stats.sink_errors += 1
                log.error(f"Could not record result for {task.url}: {e}", exc_info=True)
            finally:
                await self.frontier.task_done()

            self.monitor.update_frontier(self.frontier.get_stats())

            if max_pages and self.stats.processed >= max_pages:
                await self.cancel(f"reached max pages limit: {max_pages}")

        log.debug(f"Worker {worker_id} finished")

    async def _process_task(self, task: CrawlTask, log) -> PageResult:
        """Take one claimed task to a terminal PageResult."""
        if not await self.robots.is_allowed(task.url, self.crawler_config.user_agent):
            return PageResult(url=task.url, depth=task.depth, status=CrawlStatus.ROBOTS_DENIED)

        fetch_result = await self.fetcher.fetch(task.url, self.crawler_config.request_timeout)
        self.monitor.record_fetch_time(fetch_result.fetch_time)

        if not fetch_result.ok:
            return PageResult(
                url=task.url,
                depth=task.depth,
                status=CrawlStatus.FETCH_FAILED,
                status_code=fetch_result.status_code or fetch_result.error.status_code,
                error=fetch_result.error
            )

        links: List[str] = []
        if fetch_result.is_html:
            base_url = fetch_result.final_url or task.url
            links = [normalize_url(link) for link in self.extractor.extract(fetch_result.body, base_url)]

        admitted = 0
        if task.depth < self.crawler_config.max_depth:
            for link in links:
                if await self.frontier.offer(task.child(link)):
                    admitted += 1
        self.stats.links_discovered += admitted
        self.monitor.record_links_discovered(admitted)

        log.debug(f"Fetched {task.url} (depth {task.depth}): "
                  f"{len(links)} links, {admitted} new")

        return PageResult(
            url=task.url,
            depth=task.depth,
            status=CrawlStatus.FETCHED,
            status_code=fetch_result.status_code,
            extracted_links=links
        )

    async def _record(self, result: PageResult):
        if result.status is CrawlStatus.FETCHED:
            self.stats.fetched += 1
        elif result.status is CrawlStatus.ROBOTS_DENIED:
            self.stats.skipped += 1
        else:
            self.stats.failed += 1
        self.monitor.record_result(result)

        if not await self.sink.record(result):
            self.stats.sink_errors += 1

    async def _deadline(self, max_duration: float):
        await asyncio.sleep(max_duration)
        await self.cancel(f"reached max duration: {max_duration} seconds")

    async def _stats_reporter(self):
        """Periodically log crawl progress."""
        interval = self.config.monitoring.report_interval
        while True:
            await asyncio.sleep(interval)
            frontier_stats = self.frontier.get_stats()
            self.logger.info(
                f"Crawl Progress: "
                f"Fetched={self.stats.fetched}, "
                f"Skipped={self.stats.skipped}, "
                f"Failed={self.stats.failed}, "
                f"Queued={frontier_stats['queued']}, "
                f"InFlight={frontier_stats['in_flight']}, "
                f"Rate={self.stats.pages_per_minute:.1f} pages/min"
            )

    async def _log_final_stats(self):
        """Log final crawl statistics."""
        frontier_stats = self.frontier.get_stats()

        self.logger.info("=== CRAWL COMPLETED ===" if not self.stats.cancelled
                         else f"=== CRAWL STOPPED ({self._stop_reason}) ===")
        self.logger.info(f"Fetched: {self.stats.fetched}")
        self.logger.info(f"Skipped (robots.txt): {self.stats.skipped}")
        self.logger.info(f"Failed: {self.stats.failed}")
        self.logger.info(f"Sink errors: {self.stats.sink_errors}")
        self.logger.info(f"URLs visited: {frontier_stats['visited']}")
        self.logger.info(f"URLs remaining in queue: {frontier_stats['queued']}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.debug(f"Fetcher stats: {self.fetcher.get_stats()}")
        self.logger.debug(f"Robots stats: {self.robots.get_stats()}")

        await self.sink.summarize()

    async def close(self):
        """Release the components this coordinator created."""
        if self.is_running:
            await self.cancel("shutting down")

        if self._owns_fetcher and self.fetcher:
            await self.fetcher.close()

        if self._owns_sink and self.sink:
            await self.sink.close()

        self.logger.debug("Crawl coordinator closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {**self.stats.to_dict(), 'is_running': self.is_running}
