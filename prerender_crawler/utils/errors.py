"""
Custom exception classes and error handling utilities.
"""

from typing import Optional, Dict, Any
import traceback


class PrerenderCrawlerError(Exception):
    """Base exception for all prerender crawler errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CrawlerError(PrerenderCrawlerError):
    """Exception raised during crawling operations."""
    pass


class NavigationError(CrawlerError):
    """Exception raised when a page navigation fails."""
    pass


class BrowserError(CrawlerError):
    """Exception raised when the browser capability cannot be used."""
    pass


class RunAborted(PrerenderCrawlerError):
    """Raised when a crawl run ends after shutdown was triggered."""
    pass


class ConfigurationError(PrerenderCrawlerError):
    """Exception raised for configuration-related issues."""
    pass


class ValidationError(PrerenderCrawlerError):
    """Exception raised for data validation failures."""
    pass


def handle_error(
    error: Exception,
    logger,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True
) -> None:
    """
    Handle and log errors with context information.

    Args:
        error: The exception that occurred
        logger: Logger instance to use for logging
        context: Additional context information
        reraise: Whether to reraise the exception after logging
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "traceback": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
        **(context or {})
    }

    if isinstance(error, PrerenderCrawlerError):
        error_context.update(error.details)

    logger.error("Error occurred: %s", error_context["error_message"], extra={"context": error_context})

    if reraise:
        raise error
