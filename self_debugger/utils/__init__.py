"""Utility functions."""

from .logging import setup_logging, get_logger, level_for
from .timeutil import utcnow, format_timestamp, parse_timestamp, age_seconds

__all__ = [
    "setup_logging",
    "get_logger",
    "level_for",
    "utcnow",
    "format_timestamp",
    "parse_timestamp",
    "age_seconds",
]
