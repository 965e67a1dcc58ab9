"""Process-wide logging for the dashboard server."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty at INFO; never quieter than WARNING.
NOISY_LOGGERS = ("uvicorn.access", "watchfiles", "urllib3", "passlib")


def resolve_level(level: str | int) -> int | None:
    """``"debug"`` / ``"WARNING"`` / ``10`` -> numeric level, None if unknown."""
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(str(level).strip().upper())
    return numeric if isinstance(numeric, int) else None


def configure_logging(level: str | int = "INFO") -> None:
    numeric_level = resolve_level(level)
    unknown = numeric_level is None
    if unknown:
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    root = logging.getLogger()
    # Replace, don't stack: main() may run more than once in one process.
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, numeric_level))

    if unknown:
        logging.getLogger(__name__).warning("Invalid log level %r, using INFO", level)
