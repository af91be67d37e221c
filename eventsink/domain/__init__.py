"""
Domain package for eventsink.

Exports the Schema Model, the column type system, and the pydantic models of
the configuration document. Keep this package free of database I/O.
"""

from eventsink.domain.document import AppDocument, ColumnDocument, SchemaDocument, TableDocument
from eventsink.domain.schema import TABLE_SELECTOR, App, Column, Schema, Table, load_schema
from eventsink.domain.types import ColumnType, json_kind

__all__ = [
    "TABLE_SELECTOR",
    "App",
    "Column",
    "Schema",
    "Table",
    "load_schema",
    "ColumnType",
    "json_kind",
    "AppDocument",
    "ColumnDocument",
    "SchemaDocument",
    "TableDocument",
]
