"""
Response contract between the ingestion pipeline and the HTTP layer.

Turns an ``IngestResult`` or a ``BatchRejected`` into a status code, a JSON
payload and the CORS headers to attach. The HTTP layer only serializes what
these helpers return.
"""

from __future__ import annotations

from typing import Any, Dict, Tuple

from eventsink.errors import EventSinkError, StorageError
from eventsink.pipeline import EventOutcome, IngestResult

MULTI_STATUS = 207


def cors_headers(allow_origin: str) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "POST",
    }


def error_payload(exc: EventSinkError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"kind": exc.kind, "message": str(exc)}
    column = getattr(exc, "column", None)
    if column is not None:
        payload["column"] = column
    if isinstance(exc, StorageError):
        payload["transient"] = exc.transient
    return payload


def outcome_payload(outcome: EventOutcome) -> Dict[str, Any]:
    if outcome.ok:
        return {"index": outcome.index, "status": "ok"}
    assert outcome.error is not None
    return {"index": outcome.index, "status": "error", "error": error_payload(outcome.error)}


def status_code(result: IngestResult) -> int:
    """
    200 when every event was stored, 400 when none was and at least one was
    rejected, 207 for partial success.
    """
    if result.rejected == 0:
        return 200
    if result.accepted == 0:
        return 400
    return MULTI_STATUS


def result_payload(result: IngestResult) -> Dict[str, Any]:
    return {
        "accepted": result.accepted,
        "rejected": result.rejected,
        "results": [outcome_payload(outcome) for outcome in result.outcomes],
    }


def rejection_payload(exc: EventSinkError) -> Tuple[int, Dict[str, Any]]:
    """Status and body for a whole-batch rejection."""
    return exc.http_status, {"error": error_payload(exc)}


__all__ = [
    "cors_headers",
    "error_payload",
    "outcome_payload",
    "rejection_payload",
    "result_payload",
    "status_code",
]
