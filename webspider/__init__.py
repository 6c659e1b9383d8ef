"""
webspider

A depth-bounded, parallel web crawler that respects robots.txt and
records every page and link it discovers.
"""

__version__ = "1.0.0"
__description__ = "Depth-bounded parallel web crawler with robots.txt support"

from .crawler.coordinator import CrawlCoordinator, CrawlStats

__all__ = ['CrawlCoordinator', 'CrawlStats', '__version__']
