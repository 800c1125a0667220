"""
Optional caller-provided callbacks around each fetch and at the end of a run.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional


Hook = Callable[..., Any]


async def call_hook(hook: Optional[Hook], **kwargs) -> None:
    """Invoke ``hook`` with keyword arguments, awaiting it if it is async."""
    if hook is None:
        return
    result = hook(**kwargs)
    if inspect.isawaitable(result):
        await result


@dataclass
class CrawlHooks:
    """
    before_fetch(page, route): before the user agent is set and navigation starts.
    after_fetch(page, route, browser, add_to_queue, logs): after links were followed.
    on_end(): once the browser is closed, whatever the outcome.
    """
    before_fetch: Optional[Hook] = None
    after_fetch: Optional[Hook] = None
    on_end: Optional[Hook] = None
