"""Structured JSON logging for the provenance engine."""

import json
import logging
import os
import traceback
from datetime import UTC, datetime
from typing import IO, Any, ClassVar

ROOT_LOGGER_NAME = "provenance"


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    # Attributes every LogRecord carries; anything else came in through `extra=`
    RESERVED_ATTRS: ClassVar[frozenset[str]] = frozenset(
        vars(logging.LogRecord("", 0, "", 0, "", (), None))
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            log_entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        log_entry.update(self._extra_fields(record))
        return json.dumps(log_entry, default=str)

    def _extra_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        """Collect the `extra=` context of a record, stringifying what JSON can't hold."""
        fields: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                fields[key] = value
            except (TypeError, ValueError):
                fields[key] = str(value)
        return fields


def configure_logging(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure structured JSON logging for the engine.

    Args:
        name: The root logger name.
        level: Level name; falls back to the LOG_LEVEL environment variable, then INFO.
        stream: Output stream for the handler (stderr when omitted).

    Returns:
        Configured logger instance.
    """
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """Get a child logger of the engine's root logger.

    Args:
        module_name: Dotted module name below the package, e.g. "engine.matcher".

    Returns:
        Child logger instance.
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")
