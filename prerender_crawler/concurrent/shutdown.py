"""
Run-scoped cancellation: one shutdown flag, the rules that set it, and the
process-level listeners that feed it.
"""

import asyncio
import os
import signal
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from prerender_crawler.data.models import RunState
from prerender_crawler.utils.logging import get_logger, get_business_logger


logger = get_logger(__name__)
progress = get_business_logger("crawl_progress")


def _exit_immediately() -> None:
    os._exit(1)


class ShutdownController:
    """
    Owns the shutdown flag of a single crawl run.

    Shutdown is cooperative: once triggered, nothing new is admitted or
    fetched, work already in flight runs to completion, and the run fails.
    """

    def __init__(self, ignore_page_errors: bool = False,
                 force_exit: Optional[Callable[[], None]] = None):
        self.ignore_page_errors = ignore_page_errors
        self._force_exit = force_exit or _exit_immediately
        self._state = RunState.RUNNING
        self._triggered = False
        self.reason: Optional[str] = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        """True once shutdown was triggered, including after the run closed."""
        return self._triggered

    def trigger_shutdown(self, reason: str) -> None:
        """Request shutdown. Only the first request is recorded."""
        if self._triggered:
            return
        self._triggered = True
        self.reason = reason
        if self._state is RunState.RUNNING:
            self._state = RunState.SHUTTING_DOWN
        logger.warning(f"Shutdown triggered: {reason}")

    def report_page_error(self, route: str) -> None:
        """A fatal error happened while fetching ``route``."""
        if not self.ignore_page_errors:
            self.trigger_shutdown(f"page error at {route}")

    def handle_interrupt(self) -> None:
        """First interrupt shuts down gracefully, a second one exits at once."""
        if self._triggered:
            self._force_exit()
            return
        progress.info("\nGracefully shutting down. To exit immediately, press ^C again")
        self.trigger_shutdown("interrupted")

    def handle_unhandled_error(self, loop: Optional[asyncio.AbstractEventLoop],
                               context: Dict[str, Any]) -> None:
        """Event loop exception handler: an error nobody awaited."""
        error = context.get("exception") or context.get("message")
        progress.error(f"🔥  Unhandled error {error}")
        if not self.ignore_page_errors:
            self.trigger_shutdown(f"unhandled error: {error}")

    def mark_closed(self) -> None:
        self._state = RunState.CLOSED

    @contextmanager
    def listening(self, loop: asyncio.AbstractEventLoop) -> Iterator["ShutdownController"]:
        """
        Install the interrupt and unhandled-error listeners for the duration of
        the block, and restore whatever was there before on exit.
        """
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self.handle_unhandled_error)
        restore_signal = self._install_interrupt_handler(loop)
        try:
            yield self
        finally:
            restore_signal()
            loop.set_exception_handler(previous_handler)

    def _install_interrupt_handler(self, loop: asyncio.AbstractEventLoop) -> Callable[[], None]:
        previous = signal.getsignal(signal.SIGINT)

        try:
            loop.add_signal_handler(signal.SIGINT, self.handle_interrupt)
        except (NotImplementedError, RuntimeError):
            pass
        else:
            def restore():
                loop.remove_signal_handler(signal.SIGINT)
                if previous is not None:
                    signal.signal(signal.SIGINT, previous)
            return restore

        # Loops without signal support (e.g. on Windows)
        def on_sigint(signum, frame):
            loop.call_soon_threadsafe(self.handle_interrupt)

        try:
            signal.signal(signal.SIGINT, on_sigint)
        except ValueError:
            logger.warning("Interrupt handling unavailable outside the main thread")
            return lambda: None

        def restore_previous():
            if previous is not None:
                signal.signal(signal.SIGINT, previous)
        return restore_previous
