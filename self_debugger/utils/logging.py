"""Logging utilities."""

import logging
import sys
from typing import Optional, TextIO


LOGGER_NAME = "self_debugger"

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("github", "urllib3")


def setup_logging(
    level: int = logging.INFO,
    format_str: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Setup logging for the self-debugger.

    Log lines go to stderr by default so that command output on stdout
    (issue listings, JSON proposals) stays machine readable.

    Args:
        level: Logging level (default: INFO)
        format_str: Custom format string
        stream: Target stream (default: stderr)

    Returns:
        Configured package logger
    """
    if format_str is None:
        format_str = "[%(asctime)s] %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[logging.StreamHandler(stream or sys.stderr)],
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    return logger


def level_for(verbose: bool) -> int:
    """Map the verbose flag to a logging level."""
    return logging.DEBUG if verbose else logging.INFO


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a logger instance under the package namespace."""
    if name != LOGGER_NAME and not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
