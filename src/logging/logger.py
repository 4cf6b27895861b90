# src/logging/logger.py — v2
"""Logger factory with JSON and text formatters.

Records may carry batch fields through ``extra=``: ``error_code``,
``retry_count`` and ``data``. The JSON formatter lifts them to top-level
keys so failures can be filtered by code without parsing messages.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from audiobatch.logging.context import get_context

if TYPE_CHECKING:
    from audiobatch.config.settings import Settings

ROOT_LOGGER = "audiobatch"
_RECORD_FIELDS = ("error_code", "retry_count", "data")
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, job/record context."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            entry["context"] = context
        for field in _RECORD_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != {}:
                entry[field] = value
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line console format with short job and file ids."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        line = f"{_timestamp(record):%Y-%m-%d %H:%M:%S} [{record.levelname:8s}] {record.name}"
        if ctx.job_id:
            line += f" [job={ctx.job_id[:8]}]"
        if ctx.record_id:
            line += f" [file={ctx.record_id[:8]}]"
        if ctx.stage:
            line += f" ({ctx.stage})"
        line += f" - {record.getMessage()}"
        code = getattr(record, "error_code", None)
        if code:
            line += f" [{code}]"
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(name: str) -> logging.Logger:
    """Named child of the audiobatch logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """Configure the audiobatch logger. Safe to call repeatedly.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text".
        log_file: Optional file receiving the same records, rotated by size.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        from audiobatch.logging.handlers import create_rotating_handler

        file_handler = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


def setup_logging_from_settings(settings: Settings, level: str | None = None) -> logging.Logger:
    """Apply the LOG_* settings; ``level`` overrides LOG_LEVEL (CLI --verbose)."""
    return setup_logging(
        level=level or settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
