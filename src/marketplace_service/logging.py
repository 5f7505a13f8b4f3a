"""
Structured JSON logging for the marketplace service.

Every record is one JSON line on stdout and in ``{directory}/YYYY-MM-DD.log``
(UTC date). Context such as task, application or payment ids is passed with
``extra={...}`` and nested under ``"extra"``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

ROOT_LOGGER_NAME = "marketplace_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _utc_day() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%d")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object stamped with the service name."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": self._service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


class DailyFileHandler(logging.FileHandler):
    """File handler that switches to a new ``YYYY-MM-DD.log`` when the UTC date changes."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory).resolve()
        self._directory.mkdir(parents=True, exist_ok=True)
        self._day = _utc_day()
        super().__init__(self._directory / f"{self._day}.log", encoding="utf-8", delay=True)

    def emit(self, record: logging.LogRecord) -> None:
        day = _utc_day()
        if day != self._day:
            if self.stream is not None:
                self.stream.close()
                self.stream = None  # type: ignore[assignment]
            self._day = day
            self.baseFilename = str(self._directory / f"{day}.log")
        super().emit(record)


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Configure the package root logger.

    Calling it again (a second app in the same process, as tests do) replaces
    the previous handlers instead of stacking new ones.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_name = level.upper()
    if level_name not in VALID_LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}"
        raise ValueError(msg)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JSONFormatter(service_name)
    for handler in (logging.StreamHandler(sys.stdout), DailyFileHandler(log_directory)):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level_name)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package namespace."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
