"""
Monitoring and metrics collection for the web crawler.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class CrawlerMonitor:
    """
    Prometheus metrics for a single crawl.

    Each monitor owns its registry so several crawls (or tests) in one
    process do not collide on metric names.
    """

    def __init__(self, enable_server: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_server = enable_server
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.pages_total = Counter(
            'webspider_pages_total',
            'Processed crawl tasks by terminal status',
            ['status'],
            registry=self.registry
        )
        self.fetch_errors_total = Counter(
            'webspider_fetch_errors_total',
            'Terminal fetch errors by kind',
            ['kind'],
            registry=self.registry
        )
        self.robots_fetches_total = Counter(
            'webspider_robots_fetches_total',
            'robots.txt lookups by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.sink_errors_total = Counter(
            'webspider_sink_errors_total',
            'Results the sink failed to persist',
            registry=self.registry
        )
        self.links_discovered_total = Counter(
            'webspider_links_discovered_total',
            'Child URLs admitted to the frontier',
            registry=self.registry
        )
        self.fetch_duration_seconds = Histogram(
            'webspider_fetch_duration_seconds',
            'Wall time of a fetch including retries',
            registry=self.registry
        )
        self.frontier_queued = Gauge(
            'webspider_frontier_queued',
            'Tasks waiting in the frontier',
            registry=self.registry
        )
        self.frontier_in_flight = Gauge(
            'webspider_frontier_in_flight',
            'Tasks claimed by a worker and not yet recorded',
            registry=self.registry
        )
        self.active_workers = Gauge(
            'webspider_active_workers',
            'Running worker tasks',
            registry=self.registry
        )

    def start_server(self):
        """Start the Prometheus HTTP exposition server if enabled."""
        if not self.enable_server:
            return
        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def record_result(self, result):
        self.pages_total.labels(status=result.status.value).inc()
        if result.error is not None:
            self.fetch_errors_total.labels(kind=result.error.kind.value).inc()

    def record_fetch_time(self, seconds: float):
        self.fetch_duration_seconds.observe(seconds)

    def record_robots_fetch(self, ok: bool):
        self.robots_fetches_total.labels(outcome='ok' if ok else 'failed').inc()

    def record_sink_error(self):
        self.sink_errors_total.inc()

    def record_links_discovered(self, count: int):
        if count:
            self.links_discovered_total.inc(count)

    def update_frontier(self, stats: Dict[str, int]):
        self.frontier_queued.set(stats.get('queued', 0))
        self.frontier_in_flight.set(stats.get('in_flight', 0))

    def update_active_workers(self, count: int):
        self.active_workers.set(count)

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Read a sample from the registry; missing samples read as 0."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0
