"""Process-wide logging configuration for the CLI."""

from __future__ import annotations

import json
import logging
import os
import sys


class _CloudFormatter(logging.Formatter):
    """JSON formatter emitting Cloud Logging-compatible entries."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object with severity."""
        entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str | None = None) -> None:
    """Set up root logging.

    Outside the ``local`` environment (``LOGINCAPTURE_ENV``), emits
    JSON-structured lines::

        {"severity": "INFO", "message": "...", "logger": "..."}

    Locally, uses a human-readable plain-text format.

    Args:
        level: Log level name. Defaults to ``LOGINCAPTURE_LOG_LEVEL`` or ``INFO``.
    """
    log_level = (level or os.environ.get("LOGINCAPTURE_LOG_LEVEL", "INFO")).upper()
    env = os.environ.get("LOGINCAPTURE_ENV", "local").strip()

    if env != "local":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_CloudFormatter())
        logging.root.handlers.clear()
        logging.root.addHandler(handler)
        logging.root.setLevel(getattr(logging, log_level, logging.INFO))
    else:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )

    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
