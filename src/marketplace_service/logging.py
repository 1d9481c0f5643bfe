"""
Structured JSON logging for the marketplace service.

Every record becomes one JSON line on stdout and in a per-day file
(``YYYY-MM-DD.log``, UTC) under the configured directory. Context is passed
through ``extra=`` and lands under the ``extra`` key.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

PACKAGE_LOGGER = "marketplace_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _utc_day() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%d")


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "service": self._service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED_ATTRS}
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DailyFileHandler(logging.FileHandler):
    """File handler that switches to a new ``YYYY-MM-DD.log`` when the UTC day changes."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)
        self._day = _utc_day()
        super().__init__(self._directory / f"{self._day}.log", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        today = _utc_day()
        if today != self._day:
            self.acquire()
            try:
                self.close()
                self._day = today
                self.baseFilename = str((self._directory / f"{today}.log").resolve())
                self.stream = self._open()
            finally:
                self.release()
        super().emit(record)


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Configure the package logger to write JSON lines to stdout and a daily file.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}"
        raise ValueError(msg)

    Path(log_directory).mkdir(parents=True, exist_ok=True)
    formatter = JSONFormatter(service_name)

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level_upper)
    for handler in (logging.StreamHandler(sys.stdout), DailyFileHandler(log_directory)):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the package logger."""
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
