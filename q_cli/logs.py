"""Logging setup for q. All diagnostics go to stderr; stdout is the answer."""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "q_cli"

# Chatty third-party loggers that would drown out --debug output
_NOISY_LOGGERS = ("httpx", "httpcore", "mcp", "anyio")


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the q_cli logger.

    Args:
        debug: Emit DEBUG records instead of WARNING and above.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear existing handlers
    logger.handlers.clear()

    level = logging.DEBUG if debug else logging.WARNING
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
