"""Logging setup for the command line front end."""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class FlushingStreamHandler(logging.StreamHandler):
    """Stream handler that flushes after every record."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def resolve_level(level: Optional[str] = None) -> int:
    if os.environ.get("WEBQ_DEBUG"):
        return logging.DEBUG
    name = (level or os.environ.get("WEBQ_LOG_LEVEL") or "WARNING").upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.WARNING


def configure_logging(level: Optional[str] = None, stream=None) -> logging.Logger:
    """Attaches a stderr handler to the `webq` logger. Safe to call repeatedly."""
    logger = logging.getLogger("webq")
    logger.setLevel(resolve_level(level))
    for handler in list(logger.handlers):
        if isinstance(handler, FlushingStreamHandler):
            logger.removeHandler(handler)
    handler = FlushingStreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["configure_logging", "resolve_level", "FlushingStreamHandler"]
