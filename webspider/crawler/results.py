"""
Per-page crawl results handed to the sink.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from ..errors import FetchError


class CrawlStatus(Enum):
    """Terminal state of a processed crawl task."""
    FETCHED = "fetched"
    ROBOTS_DENIED = "robots_denied"
    FETCH_FAILED = "fetch_failed"


@dataclass
class PageResult:
    """Outcome of processing one CrawlTask."""
    url: str
    depth: int
    status: CrawlStatus
    status_code: Optional[int] = None
    extracted_links: List[str] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[FetchError] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        return {
            'url': self.url,
            'depth': self.depth,
            'status': self.status.value,
            'status_code': self.status_code,
            'extracted_links': list(self.extracted_links),
            'fetched_at': self.fetched_at.isoformat(),
            'error': self.error.to_dict() if self.error else None
        }

    def __str__(self) -> str:
        return f"{self.url} [{self.status.value}] ({len(self.extracted_links)} links)"
