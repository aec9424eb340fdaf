"""
Logging for posledger.

Modules log through ``get_logger`` under the ``posledger`` namespace. Nothing
is emitted until ``configure_logging`` attaches a handler, which PosLedger
does on construction unless told not to.
"""

import json
import logging
import sys
from typing import TextIO

LOGGER_NAME = "posledger"

_TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record; messages are escaped, not interpolated."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Attach a single stream handler to the posledger logger.

    Args:
        level: Level for both logger and handler (e.g. logging.DEBUG, "INFO")
        json_format: Write JSON lines instead of plain text
        stream: Where to write (stdout when omitted)

    Returns:
        The posledger logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Calling again swaps the handler
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)

    # Records stop here; the root logger's handlers never see them
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``posledger`` or the ``posledger.<name>`` child logger."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)
