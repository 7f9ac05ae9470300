"""Structured JSON logging for the pipeline operator.

Every record carries the controller kind, the ``namespace/name`` key being
worked on, a coarse ``event`` category and a CamelCase ``reason``. Any other
keyword passed to :class:`StructuredLogger` is emitted as an extra JSON field.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

STRUCTURED_FIELDS = ("controller", "resource", "event", "reason")

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message"}


class StructuredJSONFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        log_entry.update(
            (field, getattr(record, field)) for field in STRUCTURED_FIELDS if hasattr(record, field)
        )
        log_entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED and key not in log_entry
        )
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_structured_logging(level: str = "INFO") -> None:
    """Send all logging, kopf's included, to stdout as JSON at ``level``."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("kopf").setLevel(level)
    # Client request logging is noise at INFO
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class StructuredLogger:
    """Thin wrapper passing ``controller``/``resource``/``event``/``reason`` as record extras."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        extra = {key: value for key, value in fields.items() if value is not None}
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, **fields)


logger = StructuredLogger("pipeline-operator")
