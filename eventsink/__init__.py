"""
eventsink - schema-driven ingestion of analytics events into PostgreSQL.

Client apps post batches of JSON events; each event is validated against a
declarative, per-table schema and stored as one row. The package provides:

- a YAML-configured Schema Model with a fixed column type system
- additive startup reconciliation of the live database (tables, columns, indexes)
- per-app authorization by shared secret and table allow-list
- per-event validation and independent, pooled inserts

The HTTP server is not part of this package; it calls
``IngestionPipeline.ingest`` and renders the result with ``eventsink.response``.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from eventsink.config import Settings, get_settings
from eventsink.domain.schema import App, Column, Schema, Table, load_schema
from eventsink.domain.types import ColumnType
from eventsink.engine.authorizer import Authorization, Authorizer
from eventsink.engine.executor import AsyncInsertExecutor, InsertExecutor
from eventsink.engine.reconciler import ReconciliationPlan, SchemaReconciler, reconcile_database
from eventsink.engine.validator import TypedRow, validate_event
from eventsink.pipeline import (
    AsyncIngestionPipeline,
    EventOutcome,
    IngestionPipeline,
    IngestResult,
    bootstrap,
    create_pipeline,
)
from eventsink.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Schema
    "App",
    "Column",
    "ColumnType",
    "Schema",
    "Table",
    "load_schema",
    # Engine
    "Authorization",
    "Authorizer",
    "AsyncInsertExecutor",
    "InsertExecutor",
    "ReconciliationPlan",
    "SchemaReconciler",
    "reconcile_database",
    "TypedRow",
    "validate_event",
    # Pipeline
    "AsyncIngestionPipeline",
    "EventOutcome",
    "IngestionPipeline",
    "IngestResult",
    "bootstrap",
    "create_pipeline",
    # Logging
    "configure_logging",
    "get_logger",
]
