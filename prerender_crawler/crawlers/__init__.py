"""
Browser-facing side of the crawler: URL admission rules, the page session
interface and fetch hooks.

The page fetcher and the Playwright adapter live in their own modules:
``prerender_crawler.crawlers.page_fetcher`` and
``prerender_crawler.crawlers.playwright_session``.
"""

from .url_normalizer import UrlNormalizer, normalize_url, strip_query_and_fragment
from .session import (
    BrowserCapability,
    ConsoleMessage,
    HttpExchange,
    PageSession,
    SessionObserver,
    UncaughtError,
)
from .hooks import CrawlHooks, call_hook

__all__ = [
    'UrlNormalizer',
    'normalize_url',
    'strip_query_and_fragment',
    'BrowserCapability',
    'ConsoleMessage',
    'HttpExchange',
    'PageSession',
    'SessionObserver',
    'UncaughtError',
    'CrawlHooks',
    'call_hook',
]
