"""
Schema Reconciler: additive alignment of the live database with the Schema Model.

Runs once at startup, before any request is accepted. For every configured
table:

- missing table  -> ``CREATE TABLE`` with every column (``NOT NULL`` for
  required columns), then one ``CREATE INDEX`` per indexed column;
- existing table -> one ``ALTER TABLE ... ADD COLUMN`` per missing column
  (always nullable, so existing rows stay valid) plus its index if indexed,
  and one ``CREATE INDEX`` per indexed column whose index is missing.

Existing columns are never dropped or altered. Type drift and columns that
exist only in the database are reported as warnings. All DDL of one run is
applied in a single transaction; any failure rolls it back and raises
``ReconciliationError``.

Usage:
    from eventsink.engine.reconciler import SchemaReconciler

    with get_sync_connection(dsn) as conn:
        plan = SchemaReconciler(schema).reconcile(conn)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Sequence, Set, Tuple

import psycopg
from psycopg import sql

from eventsink.domain.schema import Column, Schema, Table, index_name
from eventsink.errors import ReconciliationError
from eventsink.infrastructure.db_factory import get_sync_connection
from eventsink.utils.logging import get_logger

log = get_logger(__name__)

_EXISTING_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = current_schema()
      AND table_name = ANY(%s)
"""

_LIVE_COLUMNS_SQL = """
    SELECT table_name, column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = current_schema()
      AND table_name = ANY(%s)
    ORDER BY table_name, ordinal_position
"""

_LIVE_INDEXES_SQL = """
    SELECT tablename, indexname
    FROM pg_indexes
    WHERE schemaname = current_schema()
      AND tablename = ANY(%s)
"""


@dataclass(frozen=True)
class LiveColumn:
    name: str
    data_type: str
    nullable: bool
    has_default: bool = False


@dataclass(frozen=True)
class DdlStatement:
    description: str
    query: sql.Composed


@dataclass
class TablePlan:
    table: str
    created: bool = False
    statements: List[DdlStatement] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ReconciliationPlan:
    tables: List[TablePlan] = field(default_factory=list)

    @property
    def statements(self) -> List[DdlStatement]:
        return [stmt for table in self.tables for stmt in table.statements]

    @property
    def warnings(self) -> List[str]:
        return [warning for table in self.tables for warning in table.warnings]

    @property
    def is_empty(self) -> bool:
        return not self.statements


def _column_definition(column: Column, enforce_required: bool) -> sql.Composed:
    parts = [sql.Identifier(column.name), sql.SQL(column.type.sql_type)]
    if enforce_required and column.required:
        parts.append(sql.SQL("NOT NULL"))
    return sql.SQL(" ").join(parts)


def _create_table(table: Table) -> DdlStatement:
    query = sql.SQL("CREATE TABLE {table} ({columns})").format(
        table=sql.Identifier(table.name),
        columns=sql.SQL(", ").join(
            _column_definition(column, enforce_required=True) for column in table.columns
        ),
    )
    return DdlStatement(f"create table {table.name}", query)


def _add_column(table: Table, column: Column) -> DdlStatement:
    query = sql.SQL("ALTER TABLE {table} ADD COLUMN {definition}").format(
        table=sql.Identifier(table.name),
        definition=_column_definition(column, enforce_required=False),
    )
    return DdlStatement(f"add column {table.name}.{column.name}", query)


def _create_index(table: Table, column: Column) -> DdlStatement:
    name = index_name(table.name, column.name)
    query = sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} ({column})").format(
        index=sql.Identifier(name),
        table=sql.Identifier(table.name),
        column=sql.Identifier(column.name),
    )
    return DdlStatement(f"create index {name}", query)


def plan_table(
    table: Table,
    live: Optional[Sequence[LiveColumn]],
    live_indexes: Collection[str] = frozenset(),
) -> TablePlan:
    """
    Compute the DDL needed for one table.

    ``live`` is the table's current columns, or None when it does not exist;
    ``live_indexes`` holds the names of the indexes already on it.
    """
    plan = TablePlan(table=table.name)
    if live is None:
        plan.created = True
        plan.statements.append(_create_table(table))
        plan.statements.extend(
            _create_index(table, column) for column in table.columns if column.indexed
        )
        return plan

    live_by_name = {column.name: column for column in live}
    for column in table.columns:
        existing = live_by_name.get(column.name)
        if existing is None:
            plan.statements.append(_add_column(table, column))
            if column.indexed:
                plan.statements.append(_create_index(table, column))
            if column.required:
                plan.warnings.append(
                    f"column {table.name}.{column.name} is added as nullable; "
                    "NOT NULL is only enforced for new tables"
                )
        else:
            if existing.data_type != column.type.catalog_type:
                plan.warnings.append(
                    f"column {table.name}.{column.name} has type {existing.data_type!r} in the "
                    f"database but {column.type.catalog_type!r} ({column.type.value}) is "
                    "configured"
                )
            if column.indexed and index_name(table.name, column.name) not in live_indexes:
                plan.statements.append(_create_index(table, column))

    configured = set(table.column_names)
    for existing in live:
        if existing.name in configured:
            continue
        if not existing.nullable and not existing.has_default:
            plan.warnings.append(
                f"column {table.name}.{existing.name} is NOT NULL without a default but is not "
                "configured; inserts into this table will fail"
            )
        else:
            plan.warnings.append(f"column {table.name}.{existing.name} is not configured")
    return plan


class SchemaReconciler:
    def __init__(self, schema: Schema) -> None:
        self._schema = schema

    def inspect(self, conn: psycopg.Connection) -> Dict[str, List[LiveColumn]]:
        """Live columns of every configured table that exists, keyed by table name."""
        names = list(self._schema.tables)
        with conn.cursor() as cur:
            cur.execute(_EXISTING_TABLES_SQL, (names,))
            existing = {row[0] for row in cur.fetchall()}
            cur.execute(_LIVE_COLUMNS_SQL, (names,))
            rows: List[Tuple] = cur.fetchall()

        live: Dict[str, List[LiveColumn]] = defaultdict(list)
        for table_name in existing:
            live[table_name] = []
        for table_name, column_name, data_type, is_nullable, column_default in rows:
            live[table_name].append(
                LiveColumn(
                    name=column_name,
                    data_type=data_type,
                    nullable=is_nullable == "YES",
                    has_default=column_default is not None,
                )
            )
        return dict(live)

    def inspect_indexes(self, conn: psycopg.Connection) -> Dict[str, Set[str]]:
        """Index names on every configured table that exists, keyed by table name."""
        indexes: Dict[str, Set[str]] = defaultdict(set)
        with conn.cursor() as cur:
            cur.execute(_LIVE_INDEXES_SQL, (list(self._schema.tables),))
            for table_name, index in cur.fetchall():
                indexes[table_name].add(index)
        return dict(indexes)

    def plan(self, conn: psycopg.Connection) -> ReconciliationPlan:
        try:
            live = self.inspect(conn)
            indexes = self.inspect_indexes(conn)
        except psycopg.Error as exc:
            raise ReconciliationError(f"failed to read database catalog: {exc}") from exc

        plan = ReconciliationPlan()
        for table in self._schema.tables.values():
            table_plan = plan_table(
                table, live.get(table.name), indexes.get(table.name, frozenset())
            )
            for warning in table_plan.warnings:
                log.warning(warning, extra={"table": table.name})
            plan.tables.append(table_plan)
        return plan

    def apply(self, conn: psycopg.Connection, plan: ReconciliationPlan) -> None:
        """Execute every statement of ``plan`` in one transaction."""
        current: Optional[DdlStatement] = None
        try:
            for current in plan.statements:
                conn.execute(current.query)
                log.info(current.description, extra={"ddl": current.description})
            conn.commit()
        except psycopg.Error as exc:
            description = current.description if current else "commit"
            log.error(
                "Schema reconciliation failed", extra={"ddl": description, "error": str(exc)}
            )
            conn.rollback()
            raise ReconciliationError(
                f"failed to {description}: {exc}", statement=description
            ) from exc

    def reconcile(self, conn: psycopg.Connection, dry_run: bool = False) -> ReconciliationPlan:
        """
        Plan and (unless ``dry_run``) apply the reconciliation.

        Running it twice in a row issues no DDL the second time.
        """
        plan = self.plan(conn)
        if dry_run or plan.is_empty:
            conn.rollback()
            log.info(
                "Schema reconciliation planned" if dry_run else "Schema is up to date",
                extra={"statements": len(plan.statements), "warnings": len(plan.warnings)},
            )
            return plan
        self.apply(conn, plan)
        log.info(
            "Schema reconciled",
            extra={"statements": len(plan.statements), "warnings": len(plan.warnings)},
        )
        return plan


def reconcile_database(
    schema: Schema, dsn: Optional[str] = None, dry_run: bool = False
) -> ReconciliationPlan:
    """Open a dedicated startup connection and reconcile ``schema`` against it."""
    try:
        conn = get_sync_connection(dsn)
    except psycopg.Error as exc:
        raise ReconciliationError(f"failed to connect to database: {exc}") from exc
    try:
        return SchemaReconciler(schema).reconcile(conn, dry_run=dry_run)
    finally:
        conn.close()


__all__ = [
    "DdlStatement",
    "LiveColumn",
    "ReconciliationPlan",
    "SchemaReconciler",
    "TablePlan",
    "index_name",
    "plan_table",
    "reconcile_database",
]
