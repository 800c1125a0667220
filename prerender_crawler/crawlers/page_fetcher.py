"""
Per-URL unit of work: open a session, navigate, collect logs, follow links.
"""

import asyncio
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, List, Optional, Set

from config import CrawlConfig
from prerender_crawler.concurrent.frontier import Frontier
from prerender_crawler.concurrent.shutdown import ShutdownController
from prerender_crawler.crawlers.hooks import CrawlHooks, call_hook
from prerender_crawler.crawlers.session import (
    BrowserCapability,
    ConsoleMessage,
    HttpExchange,
    PageSession,
    SessionObserver,
    UncaughtError,
)
from prerender_crawler.data.models import (
    ConsoleError,
    ConsoleObject,
    ConsoleText,
    CrawlTarget,
    HttpWarning,
    LogEntry,
    LogRecord,
    PageError,
)
from prerender_crawler.utils.errors import NavigationError
from prerender_crawler.utils.logging import get_logger, get_business_logger


logger = get_logger(__name__)
progress = get_business_logger("crawl_progress")

StackMapper = Callable[[str], Awaitable[str]]

# Console output produced by development tooling rather than the app
NOISY_CONSOLE_MARKERS = ("[webpack-dev-server]", "WebSocket")


def is_fatal_page_error(message: str) -> bool:
    """
    Whether an uncaught page error should stop the crawl.

    Literal message matching, known to misclassify some errors; kept as is
    rather than extended.
    """
    return message != "Event" and not message.startswith("TypeError")


def should_skip_existing(route: str, source_dir: str) -> bool:
    """True for non-HTML assets that already exist in ``source_dir``."""
    suffix = PurePosixPath(route).suffix
    if suffix in ("", ".html"):
        return False
    segments = [segment for segment in route.split("/") if segment]
    return Path(source_dir).joinpath(*segments).exists()


class RequestTracker:
    """Keeps the URLs of requests that started but have not finished."""

    MAX_REPORTED = 10

    def __init__(self):
        self._pending: List[str] = []
        self._disposed = False

    def started(self, url: str) -> None:
        if not self._disposed:
            self._pending.append(url)

    def finished(self, url: str) -> None:
        if self._disposed:
            return
        try:
            self._pending.remove(url)
        except ValueError:
            pass

    def urls(self) -> List[str]:
        return list(self._pending)

    def dispose(self) -> None:
        self._disposed = True

    def augment(self, message: str) -> str:
        """Append the most recent unfinished requests to an error message."""
        urls = self.urls()
        if not urls:
            return message
        shown = urls[-self.MAX_REPORTED:]
        if len(urls) > self.MAX_REPORTED:
            shown = ["..."] + shown
        return (
            f"{message}\nTracked URLs that have not finished ({len(urls)}):\n"
            + "\n".join(shown)
        )


class PageLogCollector:
    """Turns session events for one route into log entries."""

    def __init__(self, route: str, config: CrawlConfig, shutdown: ShutdownController,
                 stack_mapper: Optional[StackMapper] = None):
        self.route = route
        self.config = config
        self.shutdown = shutdown
        self.stack_mapper = stack_mapper
        self.logs: List[LogEntry] = []
        self.tracker = RequestTracker()
        self._pending: Set[asyncio.Future] = set()
        self._stopped = False

    def observer(self) -> SessionObserver:
        return SessionObserver(
            on_console=self.on_console,
            on_page_error=self.on_page_error,
            on_crash=self.on_crash,
            on_response=self.on_response,
            on_request_started=self.tracker.started,
            on_request_finished=self.tracker.finished,
        )

    def stop(self) -> None:
        """Ignore events from now on; the page is being closed."""
        self._stopped = True

    def _spawn(self, coroutine) -> None:
        task = asyncio.ensure_future(coroutine)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for log entries that are still being resolved."""
        while self._pending:
            tasks = list(self._pending)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self.shutdown.handle_unhandled_error(None, {
                        "message": f"Failed to resolve log entry at {self.route}",
                        "exception": result,
                    })

    def on_console(self, message: ConsoleMessage) -> None:
        if self._stopped:
            return
        if message.kind == ConsoleMessage.OBJECT:
            self._spawn(self._log_resolved(message, ConsoleObject))
        elif message.kind == ConsoleMessage.ERROR:
            self._spawn(self._log_resolved(message, ConsoleError))
        else:
            self._log_text(message.text, message.location_url)

    async def _log_resolved(self, message: ConsoleMessage, entry_type) -> None:
        values = await message.resolve_args() if message.resolve_args else []
        self.logs.append(entry_type(values))
        progress.info(f"💬  console.log of {message.text} at {self.route}: {values}")

    def _log_text(self, text: str, url: Optional[str]) -> None:
        options = self.config.options
        third_party_failure = (
            options.skip_third_party_requests
            and "ERR_FAILED" in text
            and url
            and "http" in url
            and self.config.base_path not in url
        )
        if third_party_failure:
            return

        if any(marker in text for marker in NOISY_CONSOLE_MARKERS):
            return

        self.logs.append(ConsoleText(text, url))
        if "was preloaded" not in text:
            progress.info(f"💬  console.log at {self.route}: {text} {url or ''}".rstrip())

    def on_page_error(self, error: UncaughtError) -> None:
        if self._stopped:
            return
        if self.config.options.source_maps and self.stack_mapper is not None:
            self._spawn(self._log_mapped_error(error))
        else:
            self._log_page_error(error.stack_or_message)

        if is_fatal_page_error(error.message):
            self.shutdown.report_page_error(self.route)

    def _log_page_error(self, message: str) -> None:
        self.logs.append(PageError(message))
        progress.error(f"🔥  pageerror at {self.route}: {message}")

    async def _log_mapped_error(self, error: UncaughtError) -> None:
        original = error.stack_or_message
        try:
            mapped = await self.stack_mapper(original)
        except Exception as e:
            self._log_page_error(original)
            progress.warning(f"⚠️  warning at {self.route} (error in source maps): {e}")
            return

        rows = mapped.split("\n")
        # Rows before the first automation driver frame; all but the last row when it is missing or first
        cut = next((i for i, row in enumerate(rows) if "playwright" in row), 0)
        if cut == 0:
            cut = len(rows) - 1
        first_line = original.split("\n")[0]
        self._log_page_error("\n".join([first_line] + rows[:cut]))

    def on_crash(self, reason: str) -> None:
        if self._stopped:
            return
        progress.error(f"🔥  error at {self.route}: {reason}")
        self.logs.append(PageError(reason))
        self.shutdown.report_page_error(self.route)

    def on_response(self, exchange: HttpExchange) -> None:
        if self._stopped or exchange.status < 400:
            return
        referer_route = exchange.referer.replace(self.config.base_path, "", 1) if exchange.referer else ""
        warning = HttpWarning(exchange.status, exchange.url, referer_route)
        self.logs.append(warning)
        progress.warning(f"⚠️  warning at {referer_route}: {warning.describe()}")


class PageFetcher:
    """
    Fetches one crawl target at a time.

    ``fetch`` never raises ``Exception``: failures become progress lines and,
    unless page errors are ignored, a shutdown request. Every call marks its
    target as processed exactly once.
    """

    def __init__(
        self,
        config: CrawlConfig,
        browser: BrowserCapability,
        frontier: Frontier,
        shutdown: ShutdownController,
        hooks: Optional[CrawlHooks] = None,
        stack_mapper: Optional[StackMapper] = None,
    ):
        self.config = config
        self.browser = browser
        self.frontier = frontier
        self.shutdown = shutdown
        self.hooks = hooks or CrawlHooks()
        self.stack_mapper = stack_mapper

    async def fetch(self, target: CrawlTarget) -> LogRecord:
        route = target.route
        logs: List[LogEntry] = []

        try:
            skip = should_skip_existing(route, self.config.source_dir)
            if skip or self.shutdown.is_shutting_down:
                progress.info(
                    f"🚧  skipping ({self.frontier.processed + 1}/{self.frontier.enqueued}) {route}"
                )
            else:
                collector = PageLogCollector(route, self.config, self.shutdown, self.stack_mapper)
                logs = collector.logs
                await self._visit(target, collector)
                progress.info(
                    f"✅  crawled {self.frontier.processed + 1} out of {self.frontier.enqueued} ({route})"
                )
        except Exception as e:
            if not self.shutdown.is_shutting_down:
                progress.error(f"🔥 Crawl error at {route} {e}")
                logger.debug(f"Crawl error at {route}", exc_info=True)
                self.shutdown.report_page_error(route)
        finally:
            self.frontier.mark_processed()

        return LogRecord(url=target.url, entries=list(logs))

    async def _visit(self, target: CrawlTarget, collector: PageLogCollector) -> None:
        options = self.config.options
        session = await self.browser.open_session(collector.observer())

        try:
            await self._prepare(session, target.route)

            response_waiter = None
            if options.wait_for_response:
                response_waiter = session.expect_response(options.wait_for_response)

            try:
                await session.goto(target.url)
            except Exception as e:
                if response_waiter is not None:
                    response_waiter.cancel()
                raise NavigationError(
                    collector.tracker.augment(str(e)),
                    {"route": target.route}
                ) from e
            finally:
                collector.tracker.dispose()

            if response_waiter is not None:
                await response_waiter

            if options.wait_for:
                await session.wait_for_timeout(options.wait_for)

            if options.crawl:
                for link in await session.extract_links():
                    self.frontier.admit(link)

            await call_hook(
                self.hooks.after_fetch,
                page=session.page,
                route=target.route,
                browser=self.browser.handle,
                add_to_queue=self.frontier.admit,
                logs=collector.logs,
            )
        finally:
            collector.stop()
            try:
                await collector.flush()
            finally:
                await session.close()

    async def _prepare(self, session: PageSession, route: str) -> None:
        options = self.config.options
        base_path = self.config.base_path

        await session.disable_service_workers()
        await session.set_cache_enabled(options.cache)
        if options.viewport:
            await session.set_viewport(options.viewport)
        if options.skip_third_party_requests:
            await session.restrict_requests(lambda url: url.startswith(base_path))

        await call_hook(self.hooks.before_fetch, page=session.page, route=route)
        await session.set_user_agent(options.user_agent)
