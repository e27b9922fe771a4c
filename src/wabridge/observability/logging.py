"""Structured JSON logging with correlation ID support.

Log lines go to stdout. When LOG_DIR is set, the same lines are also
written to a daily-rotating file (bridge.log, rotated at midnight,
LOG_RETENTION_DAYS files kept).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from .correlation import get_correlation_id

LOG_FILE_NAME = "bridge.log"
DEFAULT_RETENTION_DAYS = 30


class JsonFormatter(logging.Formatter):
    """JSON formatter that includes correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str)


def _daily_file_handler(log_dir: str) -> logging.Handler:
    """Build the midnight-rotating file handler for LOG_DIR."""
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    try:
        retention = int(os.environ.get("LOG_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS)))
    except ValueError:
        retention = DEFAULT_RETENTION_DAYS
    handler = TimedRotatingFileHandler(
        path / LOG_FILE_NAME,
        when="midnight",
        backupCount=retention,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JsonFormatter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a logger configured for JSON output."""
    logger = logging.getLogger(name)

    # Only configure if no handlers (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

        log_dir = os.environ.get("LOG_DIR")
        if log_dir:
            logger.addHandler(_daily_file_handler(log_dir))

        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
        logger.propagate = False

    return logger
