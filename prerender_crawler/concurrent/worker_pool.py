"""
Bounded-concurrency consumer of the frontier.
"""

import asyncio
from typing import Any, Awaitable, Callable, List

from prerender_crawler.concurrent.frontier import Frontier
from prerender_crawler.data.models import CrawlTarget
from prerender_crawler.utils.errors import ValidationError
from prerender_crawler.utils.logging import get_logger


logger = get_logger(__name__)


class WorkerPool:
    """
    Runs ``concurrency`` workers that pull targets from a frontier until it
    signals end of stream. Results are collected in completion order.
    """

    def __init__(self, concurrency: int):
        if concurrency < 1:
            raise ValidationError(
                "Worker pool needs at least one worker",
                {"concurrency": concurrency}
            )
        self.concurrency = concurrency
        self.in_flight = 0
        self.peak_in_flight = 0
        self.completed = 0

    async def run(self, frontier: Frontier,
                  handler: Callable[[CrawlTarget], Awaitable[Any]]) -> List[Any]:
        results: List[Any] = []

        async def worker(worker_id: int) -> None:
            while True:
                target = await frontier.take()
                if target is None:
                    logger.debug(f"Worker {worker_id} finished")
                    return

                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    results.append(await handler(target))
                finally:
                    self.in_flight -= 1
                self.completed += 1

        workers = [asyncio.ensure_future(worker(i)) for i in range(self.concurrency)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        logger.info(f"Worker pool drained: {self.completed} targets, peak concurrency {self.peak_in_flight}")
        return results
