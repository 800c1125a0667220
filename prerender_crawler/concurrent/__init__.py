"""
Crawl orchestration on a single asyncio event loop.

Main Components:
- Frontier: deduplicating work queue with enqueued/processed counters
- ShutdownController: run-scoped cancellation flag and its triggers
- WorkerPool: bounded number of fetches in flight
- RunCoordinator: seeds the frontier and aggregates the run result
  (``prerender_crawler.concurrent.controller``)
"""

from .shutdown import ShutdownController
from .frontier import Frontier, NOT_FOUND_PAGE
from .worker_pool import WorkerPool

__all__ = [
    'ShutdownController',
    'Frontier',
    'NOT_FOUND_PAGE',
    'WorkerPool',
]
