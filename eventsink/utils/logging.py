"""
Logging setup for eventsink.

The CLI, the schema reconciler and the ingestion pipeline all log through
standard library loggers obtained with ``get_logger(__name__)``. Structured
context travels in ``extra=`` (table, column, error kind, counts); the JSON
formatter flattens it into one object per line for log collectors, and the
console formatter keeps it out of the way.

Credentials never reach a handler: ``RedactSecretsFilter`` masks any
``extra`` field whose name looks like a secret (``secret_key``,
``password``, ``dsn``...).

Usage:
    from eventsink.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=True)
    log = get_logger(__name__)
    log.info("Event rejected", extra={"table": "events", "kind": "TypeMismatch"})
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

REDACTED = "***"

# Fields attached through ``extra=`` with these names are masked.
SECRET_FIELDS = frozenset({"secret_key", "password", "db_password", "dsn", "database_url"})

# Chatty third-party loggers capped at WARNING unless running at DEBUG.
NOISY_LOGGERS = ("psycopg.pool",)

_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "extra", "taskName"}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields a caller attached to ``record`` through ``extra=``."""
    context = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    # Older call sites pass extra={"extra": {...}}.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        context.update(nested)
    return context


class RedactSecretsFilter(logging.Filter):
    """Replace the value of secret-looking ``extra`` fields with ``***``."""

    def __init__(self, fields: Iterable[str] = SECRET_FIELDS) -> None:
        super().__init__()
        self.fields = frozenset(fields)

    def filter(self, record: logging.LogRecord) -> bool:
        for name in self.fields.intersection(vars(record)):
            setattr(record, name, REDACTED)
        nested = getattr(record, "extra", None)
        if isinstance(nested, dict) and self.fields.intersection(nested):
            record.extra = {
                key: REDACTED if key in self.fields else value for key, value in nested.items()
            }
        return True


def _json_formatter(record: logging.LogRecord) -> str:
    """One JSON object per record: time, level, logger, message, then context."""
    payload: Dict[str, Any] = {
        "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
            timespec="milliseconds"
        ),
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    payload.update(record_context(record))
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Install the eventsink handler on the root logger.

    Parameters
    ----------
    level : str
        Level name, case-insensitive ("debug", "INFO", ...).
    json_logs : bool
        Emit one JSON object per line instead of the console format.
    force : bool
        When False and the root logger already has handlers (for example
        under an embedding server), leave the existing setup alone.
    """
    root = logging.getLogger()
    if not force and root.handlers:
        return

    level = level.upper()
    third_party_level = level if level == "DEBUG" else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "redact": {"()": RedactSecretsFilter},
            },
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "filters": ["redact"],
                    "level": level,
                }
            },
            "loggers": {name: {"level": third_party_level} for name in NOISY_LOGGERS},
            "root": {"handlers": ["default"], "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "JsonFormatter",
    "RedactSecretsFilter",
    "configure_logging",
    "get_logger",
    "record_context",
]
