"""
Crawl targets, log entries and run results.
"""

from .models import (
    RunState,
    LogEntryKind,
    CrawlTarget,
    LogEntry,
    ConsoleObject,
    ConsoleError,
    ConsoleText,
    PageError,
    HttpWarning,
    LogRecord,
    run_result_to_dicts,
)

__all__ = [
    'RunState',
    'LogEntryKind',
    'CrawlTarget',
    'LogEntry',
    'ConsoleObject',
    'ConsoleError',
    'ConsoleText',
    'PageError',
    'HttpWarning',
    'LogRecord',
    'run_result_to_dicts',
]
