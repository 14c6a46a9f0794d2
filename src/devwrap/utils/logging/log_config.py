"""Logging configuration for devwrap.

Owns the `devwrap` logger configuration (handlers, formatters).
Other modules get their own logger reference via:
    _logger = logging.getLogger(f"{APP_NAME}.<component>")

Child loggers propagate to the `devwrap` logger, which does not propagate
to the root logger. This module owns the configuration; others just call
log_event().
"""

from __future__ import annotations

__all__ = [
    "configure_logging",
    "log_event",
]

import logging
from pathlib import Path

from devwrap.constants import APP_NAME
from devwrap.models import DevwrapEvent
from devwrap.utils.logging.iso_formatter import ConsoleFormatter, ISO8601Formatter

_logger = logging.getLogger(APP_NAME)
_logger.setLevel(logging.DEBUG)
_logger.propagate = False

# Initialize with stderr-only (WARNING+) until configured
if not _logger.handlers:
    _stderr_handler = logging.StreamHandler()
    _stderr_handler.setLevel(logging.WARNING)
    _stderr_handler.setFormatter(ConsoleFormatter())
    _logger.addHandler(_stderr_handler)


def configure_logging(
    event_log: Path | None,
    file_level: str = "INFO",
    verbose: bool = False,
) -> None:
    """Configure devwrap logging.

    Sets up:
    - stderr handler: WARNING+ (DEBUG+ with verbose) so command output stays clean
    - file handler: JSONL at file_level, if event_log is given

    Safe to call repeatedly; existing handlers are closed and replaced.

    Args:
        event_log: Path of the JSONL event log, or None for stderr only.
        file_level: "INFO" or "DEBUG".
        verbose: Lower the stderr threshold to DEBUG.
    """
    # Close and clear any existing handlers to avoid resource leaks
    for handler in _logger.handlers:
        handler.close()
    _logger.handlers.clear()

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stderr_handler.setFormatter(ConsoleFormatter())
    _logger.addHandler(stderr_handler)

    if event_log is None:
        return

    try:
        event_log.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(event_log, mode="a", encoding="utf-8")
    except OSError as e:
        # stderr will still work
        log_event(
            _logger,
            logging.WARNING,
            DevwrapEvent(
                event="file_logging_failed",
                message="Failed to configure file logging",
                path=str(event_log),
                error_type=type(e).__name__,
                error_message=str(e),
            ),
        )
        return

    file_handler.setLevel(logging.DEBUG if file_level == "DEBUG" else logging.INFO)
    file_handler.setFormatter(ISO8601Formatter())
    _logger.addHandler(file_handler)


def log_event(logger: logging.Logger, level: int, event: DevwrapEvent) -> None:
    """Log a DevwrapEvent at the specified level.

    Serializes the event to a dict (excluding None values) and logs it.
    The ISO8601Formatter adds the timestamp during serialization.

    Args:
        logger: Component logger (child of the `devwrap` logger).
        level: Logging level (e.g., logging.INFO, logging.WARNING).
        event: The event to log.
    """
    logger.log(level, event.model_dump(exclude_none=True))
