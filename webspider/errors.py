"""
Error taxonomy for the web crawler.

Only ConfigError is fatal. Every per-task error is captured on the
PageResult and handed to the sink instead of being raised.
"""

from enum import Enum
from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""
    pass


class ConfigError(CrawlerError):
    """Invalid or unreadable configuration. Aborts before the crawl starts."""
    pass


class FetchErrorKind(Enum):
    """Terminal failure categories for a single URL."""
    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    INVALID_RESPONSE = "invalid_response"
    TOO_MANY_REDIRECTS = "too_many_redirects"


class FetchError(CrawlerError):
    """A URL could not be fetched after the retry budget was spent."""

    def __init__(self, kind: FetchErrorKind, message: str = "",
                 status_code: Optional[int] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'status_code': self.status_code
        }

    def __repr__(self) -> str:
        return f"FetchError(kind={self.kind.name}, message={self.message!r})"


class RobotsFetchError(CrawlerError):
    """robots.txt could not be retrieved or parsed. The host is crawled fail-open."""
    pass


class SinkError(CrawlerError):
    """A storage backend failed to persist a record."""
    pass


class ExtractionError(CrawlerError):
    """A document could not be parsed for links."""
    pass
