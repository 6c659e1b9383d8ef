"""
Command line entry point for the web crawler.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from . import __version__
from .crawler.coordinator import CrawlCoordinator
from .errors import ConfigError, SinkError
from .utils.config import Config, load_config
from .utils.logger import log_system_info, setup_logging


EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_INTERRUPTED = 130


class CrawlerApp:
    """Main application class for the web crawler."""

    def __init__(self):
        self.coordinator: Optional[CrawlCoordinator] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(signal_handler, s))

    async def run(self, config: Config, max_pages: Optional[int] = None,
                  max_duration: Optional[float] = None, dry_run: bool = False) -> int:
        """Run the web crawler and return the process exit code."""
        self._shutdown_event = asyncio.Event()
        self.setup_signal_handlers()

        self.logger.info("=== WEB CRAWLER STARTING ===")
        self.logger.info(f"Origin URL: {config.crawler.origin_url}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Concurrency limit: {config.crawler.concurrency_limit}")
        self.logger.info(f"Database: {config.database.type} ({config.database.database_name})")
        log_system_info()

        self.coordinator = CrawlCoordinator(config)
        try:
            try:
                await self.coordinator.initialize()
            except SinkError as e:
                self.logger.error(f"Could not open the result store: {e}")
                return EXIT_STARTUP_FAILURE

            if dry_run:
                await self._dry_run(config)
                return EXIT_OK

            crawl_task = asyncio.create_task(self.coordinator.run(max_pages, max_duration))
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, _ = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                self.logger.info("Shutdown requested, stopping crawler...")
                await self.coordinator.cancel("interrupted")
                await crawl_task
                return EXIT_INTERRUPTED

            shutdown_task.cancel()
            stats = crawl_task.result()
            self.logger.info(f"Summary: {stats.fetched} fetched, {stats.skipped} skipped, "
                             f"{stats.failed} failed")
            return EXIT_OK

        finally:
            await self.coordinator.close()
            self.logger.info("=== WEB CRAWLER FINISHED ===")

    async def _dry_run(self, config: Config):
        """Check the result store and the origin's robots.txt without crawling."""
        self.logger.info("DRY RUN MODE: No pages will be crawled")
        self.logger.info("✓ Result store opened")

        policy = await self.coordinator.robots.get_policy(config.crawler.origin_url)
        if policy.available:
            self.logger.info(f"✓ robots.txt fetched for {policy.host}")
        else:
            self.logger.warning(f"✗ robots.txt unavailable for {policy.host}, crawl would allow all")

        allowed = policy.allows(config.crawler.origin_url, config.crawler.user_agent)
        self.logger.info(f"Origin URL allowed by robots.txt: {allowed}")
        self.logger.info("Dry run completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='webspider',
        description="Depth-bounded parallel web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  webspider                           # Run with default config.yaml
  webspider --config my_config.yaml   # Run with custom config
  webspider --max-pages 1000          # Stop after 1000 pages
  webspider --max-duration 3600       # Run for 1 hour max
  webspider --dry-run                 # Test configuration only

Set WEBSPIDER_LOG=debug (or trace) to override the configured log level.
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum number of pages to process'
    )

    parser.add_argument(
        '--max-duration',
        type=float,
        help='Maximum crawl duration in seconds'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'webspider {__version__}'
    )

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_STARTUP_FAILURE

    setup_logging(config.logging)

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(
            config,
            max_pages=args.max_pages,
            max_duration=args.max_duration,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == '__main__':
    sys.exit(main())
