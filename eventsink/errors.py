"""
Error hierarchy for eventsink.

Three families matter to callers:

- Startup faults (``ConfigError``, ``ReconciliationError``) abort the process
  before any traffic is accepted.
- Batch rejections (``BatchRejected`` subclasses) abort a whole request before
  any event is read.
- Per-event faults (``EventValidationError`` subclasses and ``StorageError``)
  are captured by the ingestion pipeline into the per-event outcome list and
  never propagate past it.

Every error exposes a stable ``kind`` string and an ``http_status`` so the
HTTP layer can render it without inspecting the class.
"""

from __future__ import annotations

from typing import Optional


class EventSinkError(Exception):
    """Base class for all eventsink errors."""

    kind: str = "EventSinkError"
    http_status: int = 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class ConfigError(EventSinkError):
    """Malformed schema document, invalid identifier, or dangling table reference."""

    kind = "ConfigError"


class ReconciliationError(EventSinkError):
    """A DDL statement failed while aligning the database with the schema."""

    kind = "ReconciliationError"

    def __init__(self, message: str, statement: Optional[str] = None) -> None:
        super().__init__(message)
        self.statement = statement


# ---------------------------------------------------------------------------
# Whole-batch rejections
# ---------------------------------------------------------------------------


class BatchRejected(EventSinkError):
    """A request batch was refused before any event was processed."""

    kind = "BatchRejected"
    http_status = 400


class UnknownApp(BatchRejected):
    kind = "UnknownApp"
    http_status = 404

    def __init__(self, app_id: str) -> None:
        super().__init__(f"unknown app {app_id!r}")
        self.app_id = app_id


class InvalidSecret(BatchRejected):
    kind = "InvalidSecret"
    http_status = 403

    def __init__(self, app_id: str) -> None:
        super().__init__(f"invalid secret key for app {app_id!r}")
        self.app_id = app_id


class UnknownTable(BatchRejected):
    kind = "UnknownTable"
    http_status = 404

    def __init__(self, table: str) -> None:
        super().__init__(f"unknown table {table!r}")
        self.table = table


class TableNotPermitted(BatchRejected):
    kind = "TableNotPermitted"
    http_status = 404

    def __init__(self, app_id: str, table: str) -> None:
        super().__init__(f"app {app_id!r} may not write to table {table!r}")
        self.app_id = app_id
        self.table = table


class InvalidBatch(BatchRejected):
    """The batch envelope itself is malformed (not a list, missing selector, too large)."""

    kind = "InvalidBatch"
    http_status = 400


# ---------------------------------------------------------------------------
# Per-event validation
# ---------------------------------------------------------------------------


class EventValidationError(EventSinkError):
    """An event failed validation against its table definition."""

    kind = "EventValidationError"
    http_status = 400

    def __init__(self, column: str, message: str) -> None:
        super().__init__(message)
        self.column = column


class MissingRequiredField(EventValidationError):
    kind = "MissingRequiredField"

    def __init__(self, column: str, source: str = "body") -> None:
        where = "request header" if source != "body" else "event body"
        super().__init__(column, f"required value {column!r} is missing from the {where}")
        self.source = source


class TypeMismatch(EventValidationError):
    kind = "TypeMismatch"

    def __init__(
        self, column: str, expected: str, received: str, detail: Optional[str] = None
    ) -> None:
        message = f"column {column!r} expects {expected}, received JSON {received}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(column, message)
        self.expected = expected
        self.received = received
        self.detail = detail


class UnknownField(EventValidationError):
    kind = "UnknownField"

    def __init__(self, column: str, table: str) -> None:
        super().__init__(column, f"table {table!r} has no body column {column!r}")
        self.table = table


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(EventSinkError):
    """An insert failed in the database; ``transient`` marks retryable failures."""

    kind = "StorageError"

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient
        self.http_status = 503 if transient else 500


__all__ = [
    "EventSinkError",
    "ConfigError",
    "ReconciliationError",
    "BatchRejected",
    "UnknownApp",
    "InvalidSecret",
    "UnknownTable",
    "TableNotPermitted",
    "InvalidBatch",
    "EventValidationError",
    "MissingRequiredField",
    "TypeMismatch",
    "UnknownField",
    "StorageError",
]
