"""
URL normalization and admission rules for the crawl frontier.
"""

import re
from typing import Iterable, Optional, Pattern, Sequence, Union
from urllib.parse import urlsplit

from prerender_crawler.utils.logging import get_logger


logger = get_logger(__name__)

PatternLike = Union[str, Pattern]


def strip_query_and_fragment(url: str) -> str:
    """Drop everything from the first ``?`` or ``#`` on; the rest is kept as is."""
    cut = len(url)
    for marker in ("?", "#"):
        index = url.find(marker)
        if index != -1:
            cut = min(cut, index)
    return url[:cut]


def _compile(patterns: Iterable[PatternLike]) -> Sequence[Pattern]:
    return [re.compile(p) if isinstance(p, str) else p for p in patterns]


class UrlNormalizer:
    """
    Decides whether a discovered URL belongs to the crawl and, if so, returns
    the form used for deduplication.

    Two URLs that differ only by a trailing slash are different entries.
    """

    def __init__(self, base_path: str, port: Optional[int] = None,
                 exclude: Iterable[PatternLike] = ()):
        self.base_path = base_path
        self.port = port
        self.exclude = _compile(exclude)
        self.hostname = urlsplit(base_path).hostname

    def normalize(self, raw_url: str) -> Optional[str]:
        """
        Normalize ``raw_url``.

        Returns:
            The URL without query and fragment, or None when it must not be
            enqueued (other host, other port, excluded path, unparsable).
        """
        if not raw_url:
            return None

        try:
            parts = urlsplit(raw_url)
            port = parts.port
        except ValueError:
            logger.debug(f"Ignoring unparsable URL: {raw_url}")
            return None

        if self.is_excluded(parts.path):
            return None

        if parts.hostname != self.hostname:
            return None

        if not self._is_on_app_port(port):
            return None

        return strip_query_and_fragment(raw_url)

    def is_excluded(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self.exclude)

    def _is_on_app_port(self, port: Optional[int]) -> bool:
        # Both absent is a match; otherwise compare as strings
        if port is None and self.port is None:
            return True
        return port is not None and self.port is not None and str(port) == str(self.port)


def normalize_url(raw_url: str, base_path: str, port: Optional[int] = None,
                  exclude: Iterable[PatternLike] = ()) -> Optional[str]:
    """Functional form of :meth:`UrlNormalizer.normalize`."""
    return UrlNormalizer(base_path, port, exclude).normalize(raw_url)
