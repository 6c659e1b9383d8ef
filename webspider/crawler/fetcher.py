"""
Web page fetcher with bounded retries, exponential backoff and redirect limits.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import FetchError, FetchErrorKind


HTML_CONTENT_TYPES = (
    'text/html',
    'application/xhtml+xml',
)


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int = 0
    body: bytes = b''
    headers: Dict[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    encoding: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[FetchError] = None
    attempts: int = 0
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_html(self) -> bool:
        """Servers that omit Content-Type are assumed to send HTML."""
        if not self.content_type:
            return True
        return any(html_type in self.content_type for html_type in HTML_CONTENT_TYPES)


class WebFetcher:
    """
    Fetches web pages over a shared aiohttp session.

    Timeouts, connection failures and 5xx responses are retried up to
    max_retries times with exponential backoff. 4xx responses and redirect
    loops are terminal on the first attempt.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_retries: int = 2, backoff_base: float = 0.5,
                 max_redirects: int = 10, max_content_size: int = 10 * 1024 * 1024,
                 connection_limit: int = 100,
                 cancel_event: Optional[asyncio.Event] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.max_redirects = max_redirects
        self.max_content_size = max_content_size
        self.connection_limit = connection_limit
        self.cancel_event = cancel_event

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'retries': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={'User-Agent': self.user_agent},
                connector=aiohttp.TCPConnector(
                    limit=self.connection_limit,
                    limit_per_host=10,
                    ttl_dns_cache=300
                )
            )
            self.logger.debug("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("WebFetcher session closed")

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch
            timeout: Per-attempt timeout in seconds, overriding the default

        Returns:
            FetchResult with the body on success or a FetchError on exhaustion
        """
        if self.session is None:
            await self.start()

        start_time = time.monotonic()
        result = FetchResult(url=url)

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    self.logger.debug(f"Crawl cancelled, not retrying {url}")
                    break
                delay = self.backoff_base * (2 ** (attempt - 1))
                self.stats['retries'] += 1
                self.logger.debug(
                    f"Retrying {url} in {delay:.2f}s ({attempt}/{self.max_retries}): {result.error}"
                )
                await asyncio.sleep(delay)

            self.stats['total_requests'] += 1
            result, retryable = await self._attempt(url, timeout)
            result.attempts = attempt + 1

            if result.ok or not retryable:
                break

        result.fetch_time = time.monotonic() - start_time

        if result.ok:
            self.stats['successful_requests'] += 1
            self.stats['total_bytes_downloaded'] += len(result.body)
            self.logger.debug(f"Fetched {url}: {result.status_code} ({len(result.body)} bytes)")
        else:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Failed to fetch {url} after {result.attempts} attempt(s): "
                                f"{result.error.message}")

        return result

    async def _attempt(self, url: str, timeout: Optional[float]) -> Tuple[FetchResult, bool]:
        """Perform one GET. Returns the result and whether a failure may be retried."""
        request_timeout = ClientTimeout(total=timeout or self.request_timeout)

        try:
            async with self.session.get(url, allow_redirects=self.max_redirects > 0,
                                        max_redirects=self.max_redirects,
                                        timeout=request_timeout) as response:
                status = response.status
                headers = dict(response.headers)
                content_type = response.headers.get('content-type', '').lower() or None

                if self.max_redirects == 0 and 300 <= status < 400 and 'location' in response.headers:
                    error = FetchError(FetchErrorKind.TOO_MANY_REDIRECTS,
                                       "Redirects are disabled", status)
                    return FetchResult(url=url, status_code=status, headers=headers, error=error), False

                if not 200 <= status < 300:
                    error = FetchError(FetchErrorKind.INVALID_RESPONSE, f"HTTP {status}", status)
                    return FetchResult(url=url, status_code=status, headers=headers,
                                       content_type=content_type, error=error), status >= 500

                body = await self._read_content_safely(response)
                if body is None:
                    error = FetchError(FetchErrorKind.INVALID_RESPONSE,
                                       f"Content exceeds {self.max_content_size} bytes", status)
                    return FetchResult(url=url, status_code=status, headers=headers,
                                       content_type=content_type, error=error), False

                return FetchResult(
                    url=url,
                    status_code=status,
                    body=body,
                    headers=headers,
                    content_type=content_type,
                    encoding=response.charset,
                    final_url=str(response.url)
                ), False

        except aiohttp.TooManyRedirects as e:
            error = FetchError(FetchErrorKind.TOO_MANY_REDIRECTS,
                               f"More than {self.max_redirects} redirects", e.status or None)
            return FetchResult(url=url, error=error), False

        except asyncio.TimeoutError:
            error = FetchError(FetchErrorKind.TIMEOUT, "Request timeout")
            return FetchResult(url=url, error=error), True

        except aiohttp.InvalidURL as e:
            error = FetchError(FetchErrorKind.CONNECTION_FAILED, f"Invalid URL: {e}")
            return FetchResult(url=url, error=error), False

        except aiohttp.ClientConnectionError as e:
            error = FetchError(FetchErrorKind.CONNECTION_FAILED, f"Connection error: {e}")
            return FetchResult(url=url, error=error), True

        except aiohttp.ClientPayloadError as e:
            error = FetchError(FetchErrorKind.CONNECTION_FAILED, f"Connection lost while reading body: {e}")
            return FetchResult(url=url, error=error), True

        except aiohttp.ClientError as e:
            error = FetchError(FetchErrorKind.INVALID_RESPONSE, f"Client error: {e}")
            return FetchResult(url=url, error=error), False

    async def _read_content_safely(self, response) -> Optional[bytes]:
        """
        Read the response body with a size limit.

        Returns:
            Body bytes, or None if the body is larger than max_content_size
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_size:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None
            chunks.append(chunk)

        return b''.join(chunks)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
