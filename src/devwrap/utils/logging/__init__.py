"""Logging utilities.

This package provides logging infrastructure for devwrap:
- iso_formatter: ISO 8601 timestamp formatting for JSONL logs
- log_config: Handler configuration and structured event helper

Import directly from submodules to avoid circular imports:
    from devwrap.utils.logging.log_config import log_event
"""

__all__: list[str] = []  # Direct submodule imports required (see docstring)
