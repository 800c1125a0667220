"""
Deduplicating work queue of crawl targets.
"""

import asyncio
from typing import Optional, Set

from prerender_crawler.concurrent.shutdown import ShutdownController
from prerender_crawler.crawlers.url_normalizer import UrlNormalizer
from prerender_crawler.data.models import CrawlTarget
from prerender_crawler.utils.logging import get_logger


logger = get_logger(__name__)

NOT_FOUND_PAGE = "/404.html"

_END_OF_STREAM = object()


class Frontier:
    """
    FIFO of admitted targets with the enqueued/processed counters.

    Every mutation happens in synchronous code, so it is atomic with respect
    to the other coroutines of the run. The frontier closes exactly once, when
    the last admitted target has been processed.
    """

    def __init__(self, normalizer: UrlNormalizer, shutdown: ShutdownController,
                 public_path: str = "", crawl: bool = True):
        self.normalizer = normalizer
        self.shutdown = shutdown
        self.public_path = public_path
        self.crawl = crawl

        self._queue: asyncio.Queue = asyncio.Queue()
        self._visited: Set[str] = set()
        self._enqueued = 0
        self._processed = 0
        self._closed = False

    @property
    def enqueued(self) -> int:
        return self._enqueued

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def visited(self) -> frozenset:
        return frozenset(self._visited)

    def admit(self, raw_url: str) -> None:
        """Enqueue ``raw_url`` unless it is rejected, already seen, or the run is winding down."""
        if self._closed or self.shutdown.is_shutting_down:
            return

        url = self.normalizer.normalize(raw_url)
        if url is None or url in self._visited:
            return

        self._visited.add(url)
        self._enqueued += 1
        self._queue.put_nowait(CrawlTarget.from_url(url, self.normalizer.base_path))
        logger.debug(f"Admitted {url} ({self._enqueued} enqueued)")

        # Make sure a custom not-found page is rendered even when nothing links to it
        if self._enqueued == 2 and self.crawl:
            self.admit(f"{self.normalizer.base_path}{self.public_path}{NOT_FOUND_PAGE}")

    async def take(self) -> Optional[CrawlTarget]:
        """Next target, or None once the frontier is closed."""
        item = await self._queue.get()
        if item is _END_OF_STREAM:
            # Leave the marker for the other consumers
            self._queue.put_nowait(_END_OF_STREAM)
            return None
        return item

    def mark_processed(self) -> None:
        """Record one finished target; closes the frontier when nothing is left."""
        if self._processed >= self._enqueued:
            raise RuntimeError("processed count would exceed enqueued count")
        self._processed += 1
        if self._processed == self._enqueued:
            self._close()

    def close_if_drained(self) -> None:
        """Close right away when nothing was admitted at all."""
        if self._processed == self._enqueued:
            self._close()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END_OF_STREAM)
        logger.debug(f"Frontier closed after {self._processed} targets")
