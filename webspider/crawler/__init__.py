"""
Web crawler core components.
"""

from .url_frontier import URLFrontier, CrawlTask
from .fetcher import WebFetcher, FetchResult
from .parser import LinkExtractor, normalize_url
from .results import PageResult, CrawlStatus
from .robots import RobotsPolicyCache, HostPolicy

__all__ = [
    'URLFrontier', 'CrawlTask',
    'WebFetcher', 'FetchResult',
    'LinkExtractor', 'normalize_url',
    'PageResult', 'CrawlStatus',
    'RobotsPolicyCache', 'HostPolicy'
]
