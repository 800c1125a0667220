"""
Data models for crawl targets and per-page log records.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum

from prerender_crawler.utils.errors import ValidationError


class RunState(Enum):
    """Lifecycle of a crawl run. Transitions only move forward."""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


class LogEntryKind(Enum):
    """Kinds of events captured while a page is fetched."""
    CONSOLE_OBJECT = "console_object"
    CONSOLE_ERROR = "console_error"
    CONSOLE_TEXT = "console_text"
    PAGE_ERROR = "page_error"
    HTTP_WARNING = "http_warning"


@dataclass(frozen=True)
class CrawlTarget:
    """A URL admitted into the frontier."""
    url: str     # Normalized absolute URL
    route: str   # URL with the base path removed

    def __post_init__(self):
        if not self.url:
            raise ValidationError("Crawl target URL is required")

    @classmethod
    def from_url(cls, url: str, base_path: str) -> "CrawlTarget":
        """Build a target, deriving the route by removing the base path."""
        return cls(url=url, route=url.replace(base_path, "", 1))


@dataclass
class LogEntry:
    """Base class of all captured log entries."""

    @property
    def kind(self) -> LogEntryKind:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class ConsoleObject(LogEntry):
    """``console.log`` of one or more objects, resolved to JSON values."""
    values: List[Any] = field(default_factory=list)

    @property
    def kind(self) -> LogEntryKind:
        return LogEntryKind.CONSOLE_OBJECT

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "values": list(self.values)}


@dataclass
class ConsoleError(LogEntry):
    """``console.log`` of error objects, stringified."""
    values: List[str] = field(default_factory=list)

    @property
    def kind(self) -> LogEntryKind:
        return LogEntryKind.CONSOLE_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "values": list(self.values)}


@dataclass
class ConsoleText(LogEntry):
    """Plain console output with the URL of the emitting script."""
    text: str = ""
    source_url: Optional[str] = None

    @property
    def kind(self) -> LogEntryKind:
        return LogEntryKind.CONSOLE_TEXT

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "text": self.text, "source_url": self.source_url}


@dataclass
class PageError(LogEntry):
    """Uncaught page exception or page crash (stack trace or message)."""
    message: str = ""

    @property
    def kind(self) -> LogEntryKind:
        return LogEntryKind.PAGE_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "message": self.message}


@dataclass
class HttpWarning(LogEntry):
    """HTTP response with a status of 400 or above."""
    status: int = 0
    target_url: str = ""
    referer_route: str = ""

    @property
    def kind(self) -> LogEntryKind:
        return LogEntryKind.HTTP_WARNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "status": self.status,
            "target_url": self.target_url,
            "referer_route": self.referer_route,
        }

    def describe(self) -> str:
        return f"got {self.status} HTTP code for {self.target_url}"


@dataclass
class LogRecord:
    """Everything captured while fetching one URL."""
    url: str
    entries: List[LogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "logs": [entry.to_dict() for entry in self.entries],
        }


def run_result_to_dicts(records: List[LogRecord]) -> List[Dict[str, Any]]:
    """Serialize a run result into plain dictionaries."""
    return [record.to_dict() for record in records]
