"""
robots.txt policy cache with per-host single-flight lookups and crawl-delay spacing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from ..errors import RobotsFetchError
from .fetcher import WebFetcher


@dataclass
class HostPolicy:
    """Crawl rules for one host, parsed from its robots.txt."""
    host: str
    robots_txt: str
    rules: RobotFileParser
    crawl_delay: Optional[float] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fetched_at_monotonic: float = field(default_factory=time.monotonic)
    available: bool = True

    def allows(self, url: str, user_agent: str) -> bool:
        return self.rules.can_fetch(user_agent, url)

    def delay_for(self, user_agent: str) -> Optional[float]:
        delay = self.rules.crawl_delay(user_agent)
        return float(delay) if delay is not None else None

    def is_expired(self, ttl: Optional[float]) -> bool:
        if ttl is None:
            return False
        return time.monotonic() - self.fetched_at_monotonic >= ttl


def parse_robots_txt(host: str, robots_url: str, robots_txt: str,
                     user_agent: str, available: bool = True) -> HostPolicy:
    """Build a HostPolicy from robots.txt text. Empty text allows everything."""
    rules = RobotFileParser()
    rules.set_url(robots_url)
    rules.parse(robots_txt.splitlines())

    policy = HostPolicy(host=host, robots_txt=robots_txt, rules=rules, available=available)
    policy.crawl_delay = policy.delay_for(user_agent)
    return policy


class RobotsPolicyCache:
    """
    Memoizes HostPolicy objects and gates fetches against them.

    Concurrent first lookups for a host share one robots.txt download: the
    first caller fetches under the host's lock, the rest wait on that lock
    and then read the cached entry. The global lock only guards the maps.
    """

    def __init__(self, fetcher: WebFetcher, user_agent: str,
                 respect_robots_txt: bool = True,
                 cache_ttl: Optional[float] = None,
                 default_delay: float = 0.0,
                 policy_listener: Optional[Callable[[HostPolicy], Awaitable[None]]] = None,
                 monitor=None):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.respect_robots_txt = respect_robots_txt
        self.cache_ttl = cache_ttl
        self.default_delay = default_delay
        self.policy_listener = policy_listener
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self._lock = asyncio.Lock()
        self._host_locks: Dict[str, asyncio.Lock] = {}
        self._policies: Dict[str, HostPolicy] = {}
        self._next_access: Dict[str, float] = {}

        self.stats = {
            'robots_fetches': 0,
            'robots_failures': 0,
            'allowed': 0,
            'denied': 0
        }

    async def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        """
        Check whether url may be fetched.

        When allowed, waits out any remaining crawl delay for the host before
        returning, so the caller may fetch immediately.
        """
        user_agent = user_agent or self.user_agent
        host = urlparse(url).netloc.lower()

        delay = self.default_delay
        if self.respect_robots_txt:
            policy = await self.get_policy(url)
            if not policy.allows(url, user_agent):
                self.stats['denied'] += 1
                self.logger.info(f"Robots.txt blocks access to: {url}")
                return False
            host_delay = policy.delay_for(user_agent)
            if host_delay is not None:
                delay = host_delay

        self.stats['allowed'] += 1
        await self._wait_for_slot(host, delay)
        return True

    async def get_policy(self, url: str) -> HostPolicy:
        """Return the cached policy for url's host, fetching it on first use."""
        parsed = urlparse(url)
        host = parsed.netloc.lower()

        async with self._lock:
            policy = self._policies.get(host)
            if policy is not None and not policy.is_expired(self.cache_ttl):
                return policy
            host_lock = self._host_locks.setdefault(host, asyncio.Lock())

        async with host_lock:
            async with self._lock:
                policy = self._policies.get(host)
                if policy is not None and not policy.is_expired(self.cache_ttl):
                    return policy

            policy = await self._fetch_policy(parsed.scheme or 'http', host)

            async with self._lock:
                self._policies[host] = policy

        if self.policy_listener is not None:
            await self.policy_listener(policy)

        return policy

    async def _fetch_policy(self, scheme: str, host: str) -> HostPolicy:
        robots_url = f"{scheme}://{host}/robots.txt"
        self.stats['robots_fetches'] += 1
        self.logger.debug(f"Fetching robots.txt from {robots_url}")

        try:
            robots_txt = await self._download(robots_url)
        except RobotsFetchError as e:
            self.stats['robots_failures'] += 1
            if self.monitor:
                self.monitor.record_robots_fetch(False)
            self.logger.warning(f"Could not fetch robots.txt for {host}, allowing all: {e}")
            return parse_robots_txt(host, robots_url, '', self.user_agent, available=False)

        if self.monitor:
            self.monitor.record_robots_fetch(True)

        policy = parse_robots_txt(host, robots_url, robots_txt, self.user_agent)
        if policy.crawl_delay is not None:
            self.logger.info(f"Crawl-delay for {host}: {policy.crawl_delay}s")
        return policy

    async def _download(self, robots_url: str) -> str:
        result = await self.fetcher.fetch(robots_url)
        if not result.ok:
            raise RobotsFetchError(result.error.message)

        try:
            return result.body.decode(result.encoding or 'utf-8')
        except (UnicodeDecodeError, LookupError) as e:
            raise RobotsFetchError(f"Undecodable robots.txt: {e}") from e

    async def _wait_for_slot(self, host: str, delay: float):
        """Reserve the next access slot for host and sleep until it starts."""
        if not delay or delay <= 0:
            return

        async with self._lock:
            now = time.monotonic()
            start = max(now, self._next_access.get(host, now))
            self._next_access[host] = start + delay

        wait = start - now
        if wait > 0:
            self.logger.debug(f"Waiting {wait:.2f}s for crawl delay on {host}")
            await asyncio.sleep(wait)

    def cached_policy(self, host: str) -> Optional[HostPolicy]:
        return self._policies.get(host.lower())

    def get_stats(self) -> Dict[str, int]:
        return {'hosts': len(self._policies), **self.stats}
