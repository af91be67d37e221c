"""
Engine package for eventsink.

Re-exports the reconciler, authorizer, validator and insert executors so
callers can import from ``eventsink.engine`` directly.
"""

from eventsink.engine.authorizer import Authorization, Authorizer
from eventsink.engine.executor import AsyncInsertExecutor, InsertExecutor, build_insert
from eventsink.engine.reconciler import (
    ReconciliationPlan,
    SchemaReconciler,
    reconcile_database,
)
from eventsink.engine.validator import TypedRow, validate_event

__all__ = [
    # Authorization
    "Authorization",
    "Authorizer",
    # Validation
    "TypedRow",
    "validate_event",
    # Storage
    "AsyncInsertExecutor",
    "InsertExecutor",
    "build_insert",
    # Reconciliation
    "ReconciliationPlan",
    "SchemaReconciler",
    "reconcile_database",
]
