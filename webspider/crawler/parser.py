"""
Link extraction and URL normalization.
"""

import logging
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from ..errors import ExtractionError


DEFAULT_PORTS = {'http': 80, 'https': 443}

CRAWLABLE_SCHEMES = ('http', 'https')

SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.ico', '.woff', '.woff2', '.ttf', '.eot'
)


def normalize_url(url: str, base: Optional[str] = None) -> str:
    """
    Canonicalize a URL so equal pages compare equal in the visited set.

    Resolves against base, lowercases scheme and host, drops default ports
    and the fragment, and turns an empty path into "/".
    """
    if base:
        url = urljoin(base, url.strip())
    parsed = urlparse(url.strip())

    scheme = parsed.scheme.lower()
    host = (parsed.hostname or '').lower()
    try:
        port = parsed.port
    except ValueError:
        port = None

    netloc = f"[{host}]" if ':' in host else host
    if parsed.username:
        userinfo = parsed.username
        if parsed.password:
            userinfo += f":{parsed.password}"
        netloc = f"{userinfo}@{netloc}"
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parsed.path or '/'
    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ''))


def get_host(url: str) -> str:
    """Return the lowercased host[:port] of a URL."""
    return urlparse(url).netloc.lower()


class LinkExtractor:
    """
    Extracts crawlable outbound links from HTML documents.

    extract() has no side effects; the same input always yields the same
    ordered list of absolute, normalized URLs.
    """

    def __init__(self, allowed_domains: Optional[Iterable[str]] = None,
                 blocked_domains: Optional[Iterable[str]] = None,
                 parser_features: str = 'lxml'):
        self.allowed_domains = {d.lower() for d in allowed_domains} if allowed_domains else set()
        self.blocked_domains = {d.lower() for d in blocked_domains} if blocked_domains else set()
        self.parser_features = parser_features
        self.logger = logging.getLogger(__name__)

    def extract(self, body: bytes, base_url: str) -> List[str]:
        """
        Extract links from a document.

        Args:
            body: Raw document bytes
            base_url: URL the document was served from

        Returns:
            Absolute URLs in document order, without duplicates. Malformed
            documents yield an empty list.
        """
        try:
            links = self._extract_links(body, base_url)
        except ExtractionError as e:
            self.logger.warning(f"Could not extract links from {base_url}: {e}")
            return []

        self.logger.debug(f"Extracted {len(links)} links from {base_url}")
        return links

    def _parse(self, body: bytes) -> BeautifulSoup:
        try:
            return BeautifulSoup(body, self.parser_features)
        except Exception as e:
            raise ExtractionError(f"Unparsable document: {e}") from e

    def _extract_links(self, body: bytes, base_url: str) -> List[str]:
        if not body:
            return []

        soup = self._parse(body)

        base_tag = soup.find('base', href=True)
        if base_tag and base_tag['href'].strip():
            base_url = urljoin(base_url, base_tag['href'].strip())

        seen = set()
        links = []
        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.startswith('#'):
                continue

            try:
                absolute_url = normalize_url(href, base_url)
            except ValueError:
                self.logger.debug(f"Skipping malformed href {href!r} on {base_url}")
                continue

            if absolute_url in seen or not self.is_valid_url(absolute_url):
                continue

            seen.add(absolute_url)
            links.append(absolute_url)

        return links

    def is_valid_url(self, url: str) -> bool:
        """Check if URL is valid for crawling."""
        parsed = urlparse(url)

        if parsed.scheme not in CRAWLABLE_SCHEMES or not parsed.netloc:
            return False

        domain = (parsed.hostname or '').lower()

        if any(domain == blocked or domain.endswith('.' + blocked)
               for blocked in self.blocked_domains):
            return False

        if self.allowed_domains and not any(
                domain == allowed or domain.endswith('.' + allowed)
                for allowed in self.allowed_domains):
            return False

        path = parsed.path.lower()
        if path.endswith(SKIP_EXTENSIONS):
            return False

        return True
