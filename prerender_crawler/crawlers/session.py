"""
Abstract browser capability consumed by the crawler.

A ``BrowserCapability`` opens one ``PageSession`` (a tab) per fetched URL. The
session reports what happens in the page through the ``SessionObserver`` handed
over when it is opened; the observer lives exactly as long as the session.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional


@dataclass
class ConsoleMessage:
    """A console call made by the page."""
    kind: str                  # "object", "error" or "text"
    text: str
    location_url: Optional[str] = None
    # Resolves the call arguments: JSON values for "object", strings for "error"
    resolve_args: Optional[Callable[[], Awaitable[List[Any]]]] = None

    OBJECT = "object"
    ERROR = "error"
    TEXT = "text"


@dataclass
class UncaughtError:
    """An exception the page did not catch."""
    message: str
    stack: Optional[str] = None

    @property
    def stack_or_message(self) -> str:
        return self.stack or self.message


@dataclass
class HttpExchange:
    """A completed HTTP request/response pair."""
    status: int
    url: str
    referer: Optional[str] = None


def _ignore(*args) -> None:
    return None


@dataclass
class SessionObserver:
    """Callbacks a session invokes for page events."""
    on_console: Callable[[ConsoleMessage], None] = _ignore
    on_page_error: Callable[[UncaughtError], None] = _ignore
    on_crash: Callable[[str], None] = _ignore
    on_response: Callable[[HttpExchange], None] = _ignore
    on_request_started: Callable[[str], None] = _ignore
    on_request_finished: Callable[[str], None] = _ignore


class PageSession(ABC):
    """One browser tab, exclusively owned by one fetch."""

    @property
    @abstractmethod
    def page(self) -> Any:
        """Underlying page handle, passed to fetch hooks."""

    @abstractmethod
    async def disable_service_workers(self) -> None:
        pass

    @abstractmethod
    async def set_cache_enabled(self, enabled: bool) -> None:
        pass

    @abstractmethod
    async def set_viewport(self, viewport: Dict[str, int]) -> None:
        pass

    @abstractmethod
    async def set_user_agent(self, user_agent: str) -> None:
        pass

    @abstractmethod
    async def restrict_requests(self, allow: Callable[[str], bool]) -> None:
        """Abort every request whose URL ``allow`` rejects."""

    @abstractmethod
    async def goto(self, url: str) -> None:
        """Navigate and wait for the network to settle, without timeout."""

    @abstractmethod
    def expect_response(self, matcher: Any) -> Awaitable[Any]:
        """
        Start waiting, without timeout, for a response matching ``matcher``
        (URL pattern or predicate). The returned awaitable supports ``cancel()``.
        """

    @abstractmethod
    async def wait_for_timeout(self, milliseconds: int) -> None:
        pass

    @abstractmethod
    async def extract_links(self) -> List[str]:
        """Absolute hrefs of anchors and alternate links, then iframe sources."""

    @abstractmethod
    async def close(self) -> None:
        pass


class BrowserCapability(ABC):
    """A running browser able to open sessions."""

    @property
    @abstractmethod
    def handle(self) -> Any:
        """Underlying browser handle, passed to fetch hooks."""

    @abstractmethod
    async def open_session(self, observer: SessionObserver) -> PageSession:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
