"""
Playwright (Chromium) implementation of the browser capability.
"""

import asyncio
import fnmatch
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    CDPSession,
    Page,
    Playwright,
    Route,
)

from config import CrawlOptions
from prerender_crawler.crawlers.session import (
    BrowserCapability,
    ConsoleMessage,
    HttpExchange,
    PageSession,
    SessionObserver,
    UncaughtError,
)
from prerender_crawler.utils.errors import BrowserError
from prerender_crawler.utils.logging import get_logger


logger = get_logger(__name__)

# SVG anchors expose href as an SVGAnimatedString; resolve it through a plain anchor
EXTRACT_LINKS_SCRIPT = """
() => Array.from(document.querySelectorAll("a,link[rel='alternate']")).map(anchor => {
  if (anchor.href && anchor.href.baseVal) {
    const a = document.createElement("a");
    a.href = anchor.href.baseVal;
    return a.href;
  }
  return anchor.href;
})
"""

EXTRACT_IFRAMES_SCRIPT = """
() => Array.from(document.querySelectorAll("iframe")).map(iframe => iframe.src)
"""

OBJECT_MARKER = "JSHandle@object"
ERROR_MARKER = "JSHandle@error"


def response_predicate(matcher: Any) -> Callable[[Any], bool]:
    """Turn a URL glob, compiled regex or predicate into a response predicate."""
    if callable(matcher):
        return matcher
    if isinstance(matcher, re.Pattern):
        return lambda response: bool(matcher.search(response.url))
    return lambda response: fnmatch.fnmatch(response.url, matcher)


def _describe_page_error(error: Any) -> UncaughtError:
    message = getattr(error, "message", None) or str(error)
    name = getattr(error, "name", None)
    if name and not message.startswith(name):
        message = f"{name}: {message}"
    return UncaughtError(message=message, stack=getattr(error, "stack", None))


class PlaywrightSession(PageSession):
    """A page in its own browser context."""

    def __init__(self, context: BrowserContext, page: Page, observer: SessionObserver):
        self._context = context
        self._page = page
        self._observer = observer
        self._cdp: Optional[CDPSession] = None
        self._attach_observer()

    @property
    def page(self) -> Page:
        return self._page

    def _attach_observer(self) -> None:
        observer = self._observer
        page = self._page

        page.on("console", self._on_console)
        page.on("pageerror", lambda error: observer.on_page_error(_describe_page_error(error)))
        page.on("crash", lambda _: observer.on_crash("Page crashed"))
        page.on("response", self._on_response)
        page.on("request", lambda request: observer.on_request_started(request.url))
        page.on("requestfinished", lambda request: observer.on_request_finished(request.url))
        page.on("requestfailed", lambda request: observer.on_request_finished(request.url))

    def _on_console(self, msg) -> None:
        text = msg.text
        args = msg.args

        if text == OBJECT_MARKER:
            async def resolve():
                return [await arg.json_value() for arg in args]
            message = ConsoleMessage(ConsoleMessage.OBJECT, text, resolve_args=resolve)
        elif text == ERROR_MARKER:
            async def resolve():
                return [await arg.evaluate("e => e.toString()") for arg in args]
            message = ConsoleMessage(ConsoleMessage.ERROR, text, resolve_args=resolve)
        else:
            location = msg.location or {}
            message = ConsoleMessage(ConsoleMessage.TEXT, text, location_url=location.get("url"))

        self._observer.on_console(message)

    def _on_response(self, response) -> None:
        referer = response.request.headers.get("referer")
        self._observer.on_response(HttpExchange(response.status, response.url, referer))

    async def _cdp_session(self) -> CDPSession:
        if self._cdp is None:
            self._cdp = await self._context.new_cdp_session(self._page)
        return self._cdp

    async def disable_service_workers(self) -> None:
        cdp = await self._cdp_session()
        await cdp.send("ServiceWorker.disable")

    async def set_cache_enabled(self, enabled: bool) -> None:
        cdp = await self._cdp_session()
        await cdp.send("Network.setCacheDisabled", {"cacheDisabled": not enabled})

    async def set_viewport(self, viewport: Dict[str, int]) -> None:
        await self._page.set_viewport_size({"width": viewport["width"], "height": viewport["height"]})

    async def set_user_agent(self, user_agent: str) -> None:
        cdp = await self._cdp_session()
        await cdp.send("Network.setUserAgentOverride", {"userAgent": user_agent})

    async def restrict_requests(self, allow: Callable[[str], bool]) -> None:
        async def handle(route: Route) -> None:
            if allow(route.request.url):
                await route.continue_()
            else:
                await route.abort()

        await self._page.route("**/*", handle)

    async def goto(self, url: str) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=0)

    def expect_response(self, matcher: Any) -> Awaitable[Any]:
        return asyncio.ensure_future(
            self._page.wait_for_event("response", response_predicate(matcher), timeout=0)
        )

    async def wait_for_timeout(self, milliseconds: int) -> None:
        await self._page.wait_for_timeout(milliseconds)

    async def extract_links(self) -> List[str]:
        anchors = await self._page.evaluate(EXTRACT_LINKS_SCRIPT)
        iframes = await self._page.evaluate(EXTRACT_IFRAMES_SCRIPT)
        return [link for link in anchors + iframes if link]

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class PlaywrightBrowser(BrowserCapability):
    """Chromium launched through Playwright; one browser context per session."""

    def __init__(self, playwright: Playwright, browser: Browser, options: CrawlOptions):
        self._playwright = playwright
        self._browser = browser
        self._options = options

    @classmethod
    async def launch(cls, options: CrawlOptions) -> "PlaywrightBrowser":
        """Start Playwright and launch Chromium with the configured options."""
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=options.headless,
                args=options.browser_args,
                executable_path=options.executable_path,
                # Interrupts are handled by the crawl run itself
                handle_sigint=False,
            )
        except Exception as e:
            await playwright.stop()
            raise BrowserError(
                "Failed to launch Chromium",
                {"error": str(e), "executable_path": options.executable_path}
            )

        logger.info(f"Chromium launched (headless={options.headless})")
        return cls(playwright, browser, options)

    @property
    def handle(self) -> Browser:
        return self._browser

    async def open_session(self, observer: SessionObserver) -> PlaywrightSession:
        context = await self._browser.new_context(
            ignore_https_errors=self._options.ignore_https_errors,
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightSession(context, page, observer)

    async def close(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()
        logger.info("Chromium closed")
