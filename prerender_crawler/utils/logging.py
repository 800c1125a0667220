"""
Logging configuration and utilities.

Two streams are kept apart: the diagnostic logs of every module (``get_logger``)
and the human-readable crawl progress lines (``get_business_logger``), which are
printed as bare messages so the emoji prefixes stay readable. Run-level events
are emitted through structlog (``get_structured_logger``).
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime, timedelta

import structlog


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    retention_days: int = 7
) -> None:
    """
    Set up logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        retention_days: Number of days to retain rotated log files
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    # Progress lines already reach stdout through their own handler
    console_handler.addFilter(lambda record: not record.name.startswith("business."))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8'
        )
        file_handler.suffix = "%Y-%m-%d"

        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        cleanup_old_logs(log_path.parent, retention_days)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


def get_business_logger(business_name: str, log_level: str = "INFO") -> logging.Logger:
    """
    Get the logger for a human-facing stream such as crawl progress.

    Messages are written verbatim to stdout and still propagate to the root
    logger, so a log file configured by ``setup_logging`` records them too.

    Args:
        business_name: Stream name (e.g. 'crawl_progress')
        log_level: Logging level

    Returns:
        Configured logger
    """
    logger = logging.getLogger(f"business.{business_name}")

    # Already configured
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper()))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)

    return logger


def cleanup_old_logs(logs_dir: Path, retention_days: int = 7) -> int:
    """
    Remove log files older than the retention period.

    Args:
        logs_dir: Log directory
        retention_days: Number of days to keep

    Returns:
        Number of removed files
    """
    if not logs_dir.exists():
        return 0

    cleaned_count = 0
    cutoff_date = datetime.now() - timedelta(days=retention_days)

    for log_file in logs_dir.glob("*.log*"):
        if not log_file.is_file():
            continue

        file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
        if file_mtime < cutoff_date:
            try:
                log_file.unlink()
            except OSError as e:
                logging.getLogger(__name__).warning(f"Could not remove old log {log_file.name}: {e}")
                continue
            cleaned_count += 1

    if cleaned_count > 0:
        logging.getLogger(__name__).info(f"Removed {cleaned_count} expired log files from {logs_dir}")

    return cleaned_count


def get_structured_logger(name: str):
    """
    Get a structlog logger for key/value run events.

    Once ``setup_logging`` has run, events are rendered as JSON through the
    standard logging handlers.
    """
    return structlog.get_logger(name)
