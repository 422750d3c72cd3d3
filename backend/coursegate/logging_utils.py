from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_TOP_LEVEL = ("request_id", "user_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per line; request ids on top, structured extras under ``context``."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting only
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _TOP_LEVEL:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["exc_info"] = self.formatException(record.exc_info)

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in _TOP_LEVEL and value is not None
        }
        if context:
            entry["context"] = context
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger through the JSON formatter. Idempotent."""
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_context": {
                    "()": "coursegate.logging_context.RequestContextFilter",
                }
            },
            "formatters": {
                "json": {
                    "()": "coursegate.logging_utils.JSONFormatter",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                }
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "json",
                    "filters": ["request_context"],
                    "level": level,
                }
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
            "root": {"handlers": ["stdout"], "level": level},
        }
    )
