"""JSON-lines log for the dashboard and MCP server.

Each line carries ``ts``, ``level``, ``logger`` and ``msg``. Context passed
through ``extra=`` is added when present. The executor tags moves and
lost compare-and-swap races with ``task_id``. The dashboard middleware
adds ``route`` and ``duration_ms``; MCP tool calls add ``tool`` and
``args``. The file is .tasklane/tasklane.log, rotated
at 5MB with 3 backups.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FILENAME = "tasklane.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

# LogRecord attributes copied into the JSON entry when set via ``extra=``.
# args_data is emitted as "args" (LogRecord.args is reserved).
_EXTRA_FIELDS = (
    ("tool", "tool"),
    ("route", "route"),
    ("task_id", "task_id"),
    ("args_data", "args"),
    ("duration_ms", "duration_ms"),
    ("error", "error"),
)


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for attr, key in _EXTRA_FIELDS:
            if hasattr(record, attr):
                entry[key] = getattr(record, attr)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def setup_logging(tasklane_dir: Path) -> logging.Logger:
    """Set up structured JSON logging to .tasklane/tasklane.log.

    Idempotent per path; a call with a different directory replaces the
    previous file handler. Returns the package logger.
    """
    logger = logging.getLogger("tasklane")
    log_path = tasklane_dir / LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))

    with _setup_lock:
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                return logger
            # Different path: drop the stale handler so records go to one file.
            logger.removeHandler(h)
            h.close()

        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
        )
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger
