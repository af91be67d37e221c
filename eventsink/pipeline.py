"""
Ingestion Pipeline: the entry point the HTTP layer calls once per request.

Usage:
    from eventsink.pipeline import create_pipeline

    pipeline = create_pipeline(schema)
    result = pipeline.ingest(
        app_id="com.example.myapp",
        secret_key=body["secret_key"],
        events=body["events"],
        headers=request.headers,
    )
    for outcome in result.outcomes:
        ...

Authorization happens before any event is read: an unknown app, a wrong
secret, or any addressed table that is unknown or not permitted rejects the
whole batch by raising a ``BatchRejected`` subclass. Once authorized, every
event is validated and inserted independently; validation and storage errors
are recorded in that event's outcome and never abort the batch.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from eventsink.config import Settings, get_settings
from eventsink.domain.schema import TABLE_SELECTOR, Schema, Table, load_schema
from eventsink.engine.authorizer import Authorizer
from eventsink.engine.executor import AsyncInsertExecutor, InsertExecutor
from eventsink.engine.reconciler import reconcile_database
from eventsink.engine.validator import TypedRow, normalize_headers, validate_event
from eventsink.errors import EventSinkError, EventValidationError, InvalidBatch, StorageError
from eventsink.infrastructure.db_factory import get_sync_pool
from eventsink.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class EventOutcome:
    """Result of one event: the inserted row, or the error that stopped it."""

    index: int
    table: str
    row: Optional[TypedRow] = None
    error: Optional[EventSinkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class IngestResult:
    allow_origin: str
    outcomes: Tuple[EventOutcome, ...]

    @property
    def accepted(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def rejected(self) -> int:
        return len(self.outcomes) - self.accepted


@dataclass(frozen=True)
class _Work:
    index: int
    table: Table
    event: Mapping[str, Any]


class _BasePipeline:
    def __init__(self, schema: Schema, max_events: Optional[int] = None) -> None:
        self.schema = schema
        self.authorizer = Authorizer(schema)
        self.max_events = max_events

    def _prepare(
        self,
        app_id: str,
        secret_key: str,
        events: Any,
        table: Optional[str],
    ) -> Tuple[str, List[_Work]]:
        app = self.authorizer.authenticate(app_id, secret_key)

        if not isinstance(events, (list, tuple)):
            raise InvalidBatch("'events' must be a JSON array")
        if self.max_events is not None and len(events) > self.max_events:
            raise InvalidBatch(
                f"batch has {len(events)} events; at most {self.max_events} are accepted"
            )

        names: List[str] = []
        for index, event in enumerate(events):
            if not isinstance(event, dict):
                raise InvalidBatch(f"event {index} is not a JSON object")
            name = table if table is not None else event.get(TABLE_SELECTOR)
            if not isinstance(name, str):
                raise InvalidBatch(f"event {index} has no {TABLE_SELECTOR!r} table selector")
            names.append(name)

        tables: Dict[str, Table] = {}
        for name in names:
            if name not in tables:
                tables[name] = self.authorizer.authorize_table(app, name).table

        work = [
            _Work(index=index, table=tables[name], event=event)
            for index, (name, event) in enumerate(zip(names, events))
        ]
        return app.access_control_allow_origin, work

    def _reject(self, app_id: str, exc: EventSinkError) -> None:
        log.warning(
            "Batch rejected",
            extra={"app_id": app_id, "kind": exc.kind, "error": str(exc)},
        )

    def _validate(self, item: _Work, headers: Mapping[str, str]) -> TypedRow:
        return validate_event(item.table, item.event, headers)

    def _record_failure(self, item: _Work, exc: EventSinkError) -> EventOutcome:
        if isinstance(exc, StorageError):
            log.warning(
                "Event insert failed",
                extra={
                    "table": item.table.name,
                    "index": item.index,
                    "transient": exc.transient,
                    "error": str(exc),
                },
            )
        else:
            log.info(
                "Event rejected",
                extra={
                    "table": item.table.name,
                    "index": item.index,
                    "kind": exc.kind,
                    "column": getattr(exc, "column", None),
                },
            )
        return EventOutcome(index=item.index, table=item.table.name, error=exc)

    def _summarize(self, app_id: str, result: IngestResult) -> IngestResult:
        log.info(
            "Batch processed",
            extra={"app_id": app_id, "accepted": result.accepted, "rejected": result.rejected},
        )
        return result


class IngestionPipeline(_BasePipeline):
    """
    Synchronous pipeline.

    Parameters
    ----------
    schema : Schema
        The reconciled Schema Model.
    executor : InsertExecutor
        Performs the per-event inserts.
    max_workers : int
        Events of one batch are fanned out over this many threads; 1 processes
        them sequentially. Outcomes are returned in input order either way.
    max_events : int | None
        Largest accepted batch; larger batches raise ``InvalidBatch``.
    """

    def __init__(
        self,
        schema: Schema,
        executor: InsertExecutor,
        max_workers: int = 1,
        max_events: Optional[int] = None,
    ) -> None:
        super().__init__(schema, max_events=max_events)
        self.executor = executor
        self.max_workers = max(1, max_workers)

    def _process(self, item: _Work, headers: Mapping[str, str]) -> EventOutcome:
        try:
            row = self._validate(item, headers)
            self.executor.insert(row)
        except (EventValidationError, StorageError) as exc:
            return self._record_failure(item, exc)
        log.debug("Event stored", extra={"table": item.table.name, "index": item.index})
        return EventOutcome(index=item.index, table=item.table.name, row=row)

    def ingest(
        self,
        app_id: str,
        secret_key: str,
        events: Sequence[Any],
        headers: Optional[Mapping[str, str]] = None,
        table: Optional[str] = None,
    ) -> IngestResult:
        """
        Authorize, validate and store one batch.

        ``table`` is the destination routed from the URL; when None each
        event names its table in its ``_t`` key.

        Raises
        ------
        BatchRejected
            ``UnknownApp``, ``InvalidSecret``, ``UnknownTable``,
            ``TableNotPermitted`` or ``InvalidBatch``; no event was processed.
        """
        try:
            allow_origin, work = self._prepare(app_id, secret_key, events, table)
        except EventSinkError as exc:
            self._reject(app_id, exc)
            raise

        lowered = normalize_headers(headers)
        if self.max_workers > 1 and len(work) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(work))) as pool:
                outcomes = list(pool.map(lambda item: self._process(item, lowered), work))
        else:
            outcomes = [self._process(item, lowered) for item in work]

        return self._summarize(app_id, IngestResult(allow_origin, tuple(outcomes)))


class AsyncIngestionPipeline(_BasePipeline):
    """Asynchronous pipeline; events of a batch are processed concurrently."""

    def __init__(
        self,
        schema: Schema,
        executor: AsyncInsertExecutor,
        max_events: Optional[int] = None,
    ) -> None:
        super().__init__(schema, max_events=max_events)
        self.executor = executor

    async def _process(self, item: _Work, headers: Mapping[str, str]) -> EventOutcome:
        try:
            row = self._validate(item, headers)
            await self.executor.insert(row)
        except (EventValidationError, StorageError) as exc:
            return self._record_failure(item, exc)
        log.debug("Event stored", extra={"table": item.table.name, "index": item.index})
        return EventOutcome(index=item.index, table=item.table.name, row=row)

    async def ingest(
        self,
        app_id: str,
        secret_key: str,
        events: Sequence[Any],
        headers: Optional[Mapping[str, str]] = None,
        table: Optional[str] = None,
    ) -> IngestResult:
        """Async counterpart of ``IngestionPipeline.ingest``."""
        try:
            allow_origin, work = self._prepare(app_id, secret_key, events, table)
        except EventSinkError as exc:
            self._reject(app_id, exc)
            raise

        lowered = normalize_headers(headers)
        outcomes = await asyncio.gather(*(self._process(item, lowered) for item in work))
        return self._summarize(app_id, IngestResult(allow_origin, tuple(outcomes)))


def create_pipeline(schema: Schema, settings: Optional[Settings] = None) -> IngestionPipeline:
    """Wire a sync pipeline to the managed connection pool using ``settings``."""
    settings = settings or get_settings()
    pool = get_sync_pool(dsn=settings.dsn(schema.database_url))
    return IngestionPipeline(
        schema,
        InsertExecutor(pool),
        max_workers=settings.ingest_concurrency,
        max_events=settings.max_events_per_batch,
    )


def bootstrap(
    settings: Optional[Settings] = None, schema: Optional[Schema] = None
) -> IngestionPipeline:
    """
    Startup sequence: load the schema, reconcile the database, build the pipeline.

    Reconciliation completes before the pipeline exists, so nothing can be
    ingested against a schema that was not verified. ``ConfigError`` and
    ``ReconciliationError`` propagate and must abort startup.
    """
    settings = settings or get_settings()
    schema = schema or load_schema(settings.schema_file)
    reconcile_database(schema, dsn=settings.dsn(schema.database_url))
    return create_pipeline(schema, settings)


__all__ = [
    "AsyncIngestionPipeline",
    "EventOutcome",
    "IngestResult",
    "IngestionPipeline",
    "bootstrap",
    "create_pipeline",
]
