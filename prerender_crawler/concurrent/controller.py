"""
Crawl run coordinator.
Ties frontier, worker pool, page fetcher and shutdown control together.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from config import CrawlConfig, CrawlOptions
from prerender_crawler.concurrent.frontier import Frontier
from prerender_crawler.concurrent.shutdown import ShutdownController
from prerender_crawler.concurrent.worker_pool import WorkerPool
from prerender_crawler.crawlers.hooks import CrawlHooks, call_hook
from prerender_crawler.crawlers.page_fetcher import PageFetcher, StackMapper
from prerender_crawler.crawlers.session import BrowserCapability
from prerender_crawler.crawlers.url_normalizer import UrlNormalizer
from prerender_crawler.data.models import LogRecord
from prerender_crawler.utils.errors import RunAborted
from prerender_crawler.utils.logging import get_logger, get_structured_logger


logger = get_logger(__name__)
events = get_structured_logger(__name__)

BrowserLauncher = Callable[[CrawlOptions], Awaitable[BrowserCapability]]


async def launch_playwright(options: CrawlOptions) -> BrowserCapability:
    # Playwright is only needed when no launcher is injected
    from prerender_crawler.crawlers.playwright_session import PlaywrightBrowser
    return await PlaywrightBrowser.launch(options)


class RunCoordinator:
    """Runs one crawl from seeding to the aggregated result."""

    def __init__(
        self,
        config: CrawlConfig,
        hooks: Optional[CrawlHooks] = None,
        browser_launcher: Optional[BrowserLauncher] = None,
        stack_mapper: Optional[StackMapper] = None,
        force_exit: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            config: Crawl configuration
            hooks: Optional fetch and end-of-run callbacks
            browser_launcher: Coroutine returning the browser (Playwright by default)
            stack_mapper: Source-map resolver for page error stacks
            force_exit: Called on a second interrupt (terminates the process by default)
        """
        self.config = config
        self.hooks = hooks or CrawlHooks()
        self.browser_launcher = browser_launcher or launch_playwright
        self.stack_mapper = stack_mapper
        self.shutdown = ShutdownController(
            ignore_page_errors=config.options.ignore_page_errors,
            force_exit=force_exit,
        )
        self.frontier: Optional[Frontier] = None
        self.pool: Optional[WorkerPool] = None

    async def run(self) -> List[LogRecord]:
        """
        Crawl until the frontier is exhausted.

        Returns:
            One log record per admitted URL

        Raises:
            RunAborted: If shutdown was triggered at any point of the run
        """
        options = self.config.options
        loop = asyncio.get_running_loop()

        with self.shutdown.listening(loop):
            browser = await self.browser_launcher(options)
            try:
                records = await self._crawl(browser)
            finally:
                self.shutdown.mark_closed()
                await browser.close()

        await call_hook(self.hooks.on_end)

        if self.shutdown.is_shutting_down:
            details = {
                "reason": self.shutdown.reason,
                "processed": self.frontier.processed,
                "enqueued": self.frontier.enqueued,
            }
            events.warning("crawl_aborted", base_path=self.config.base_path, **details)
            raise RunAborted("Crawl aborted", details)

        events.info("crawl_finished", base_path=self.config.base_path, pages=len(records))
        return records

    async def _crawl(self, browser: BrowserCapability) -> List[LogRecord]:
        options = self.config.options
        normalizer = UrlNormalizer(self.config.base_path, options.port, options.exclude_patterns)
        self.frontier = Frontier(
            normalizer,
            self.shutdown,
            public_path=self.config.public_path,
            crawl=options.crawl,
        )
        fetcher = PageFetcher(
            self.config,
            browser,
            self.frontier,
            self.shutdown,
            hooks=self.hooks,
            stack_mapper=self.stack_mapper,
        )

        for path in options.include:
            self.frontier.admit(f"{self.config.base_path}{path}")
        self.frontier.close_if_drained()

        logger.info(
            f"Crawling {self.config.base_path} with concurrency {options.concurrency} "
            f"({self.frontier.enqueued} seeds)"
        )

        self.pool = WorkerPool(options.concurrency)
        return await self.pool.run(self.frontier, fetcher.fetch)


def crawl(config: CrawlConfig, hooks: Optional[CrawlHooks] = None,
          **kwargs) -> List[LogRecord]:
    """Run a crawl to completion on a new event loop."""
    return asyncio.run(RunCoordinator(config, hooks=hooks, **kwargs).run())
