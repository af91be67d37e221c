"""
Insert Executor: one parameterized INSERT per validated event.

Each insert borrows a pooled connection for exactly one statement. The pool's
connection context commits on success, rolls back on failure and returns the
connection on every exit path, including cancellation. Events are never
batched into one statement, so one failing event cannot block another.

Database failures are wrapped in ``StorageError`` and classified only as
transient (connection loss, pool exhaustion, serialization failures: the
``psycopg.OperationalError`` / ``psycopg.InterfaceError`` families) or
permanent (everything else, e.g. constraint violations).
"""

from __future__ import annotations

import psycopg
from psycopg import sql
from psycopg_pool import AsyncConnectionPool, ConnectionPool

from eventsink.engine.validator import TypedRow
from eventsink.errors import StorageError

_TRANSIENT = (psycopg.OperationalError, psycopg.InterfaceError)


def build_insert(row: TypedRow) -> sql.Composed:
    """``INSERT INTO "table" ("a", "b") VALUES (%s, %s)`` for ``row``."""
    return sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values})").format(
        table=sql.Identifier(row.table),
        columns=sql.SQL(", ").join(sql.Identifier(name) for name in row.columns),
        values=sql.SQL(", ").join([sql.Placeholder()] * len(row.items)),
    )


def storage_error(exc: psycopg.Error, table: str) -> StorageError:
    transient = isinstance(exc, _TRANSIENT)
    return StorageError(f"insert into {table!r} failed: {exc}", transient=transient)


class InsertExecutor:
    """Synchronous executor backed by a ``psycopg_pool.ConnectionPool``."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def insert(self, row: TypedRow) -> None:
        query = build_insert(row)
        try:
            with self._pool.connection() as conn:
                conn.execute(query, row.values)
        except psycopg.Error as exc:
            raise storage_error(exc, row.table) from exc


class AsyncInsertExecutor:
    """Asynchronous executor backed by a ``psycopg_pool.AsyncConnectionPool``."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def insert(self, row: TypedRow) -> None:
        query = build_insert(row)
        try:
            async with self._pool.connection() as conn:
                await conn.execute(query, row.values)
        except psycopg.Error as exc:
            raise storage_error(exc, row.table) from exc


__all__ = ["AsyncInsertExecutor", "InsertExecutor", "build_insert", "storage_error"]
