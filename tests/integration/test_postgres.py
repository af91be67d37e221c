"""
Integration tests for eventsink against PostgreSQL.

These tests run against a real PostgreSQL instance and verify that:
1. Reconciliation creates configured tables and is idempotent
2. Reconciliation only adds what is missing to existing tables
3. Ingested events land in the database with their coerced types

Each test works in a throwaway schema (see the ``scratch_dsn`` fixture).

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import psycopg
import pytest
from psycopg_pool import AsyncConnectionPool, ConnectionPool

from eventsink.domain.schema import Schema
from eventsink.engine.executor import AsyncInsertExecutor, InsertExecutor
from eventsink.engine.reconciler import reconcile_database
from eventsink.errors import StorageError
from eventsink.pipeline import AsyncIngestionPipeline, IngestionPipeline

from tests.conftest import SECRET

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)

GAME_START = datetime(2019, 4, 1, 14, 49, 40, tzinfo=timezone.utc)


def _columns(dsn: str, table: str) -> dict:
    with psycopg.connect(dsn) as conn:
        rows = conn.execute(
            """
            SELECT column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = %s
            """,
            (table,),
        ).fetchall()
    return {name: (data_type, nullable) for name, data_type, nullable in rows}


class TestReconciliation:
    """Startup DDL against a live catalog."""

    def test_creates_tables_then_is_idempotent(self, events_schema: Schema, scratch_dsn: str):
        first = reconcile_database(events_schema, dsn=scratch_dsn)
        second = reconcile_database(events_schema, dsn=scratch_dsn)

        assert all(table.created for table in first.tables)
        assert second.is_empty
        assert second.warnings == []

        columns = _columns(scratch_dsn, "events")
        assert columns["time"] == ("timestamp with time zone", "YES")
        assert columns["event_type"] == ("character varying", "NO")
        assert columns["score"] == ("integer", "YES")

    def test_adds_only_missing_columns(self, events_schema: Schema, scratch_dsn: str):
        with psycopg.connect(scratch_dsn) as conn:
            conn.execute('CREATE TABLE "events" ("time" TIMESTAMPTZ, "legacy" TEXT)')
            conn.execute("INSERT INTO \"events\" (\"legacy\") VALUES ('kept')")

        plan = reconcile_database(events_schema, dsn=scratch_dsn)

        assert "column events.legacy is not configured" in plan.warnings
        columns = _columns(scratch_dsn, "events")
        assert set(columns) == {"time", "legacy", "referer", "event_type", "score"}
        assert columns["event_type"][1] == "YES"
        with psycopg.connect(scratch_dsn) as conn:
            assert conn.execute('SELECT "legacy" FROM "events"').fetchall() == [("kept",)]

    def test_dry_run_leaves_database_untouched(self, events_schema: Schema, scratch_dsn: str):
        plan = reconcile_database(events_schema, dsn=scratch_dsn, dry_run=True)

        assert not plan.is_empty
        assert _columns(scratch_dsn, "events") == {}


class TestIngestion:
    """Batches flowing through the pipeline into real tables."""

    def test_example_batch_round_trip(self, events_schema: Schema, scratch_dsn: str):
        reconcile_database(events_schema, dsn=scratch_dsn)
        events = [
            {"_t": "events", "time": 1554130180, "event_type": "game_start"},
            {"_t": "events", "time": "bad", "event_type": "game_end", "score": 42},
            {"_t": "events", "time": "2019-04-01T16:49:40+02:00", "event_type": "level", "score": 7},
        ]

        with ConnectionPool(scratch_dsn, min_size=1, max_size=2, open=True) as pool:
            pipeline = IngestionPipeline(events_schema, InsertExecutor(pool), max_workers=2)
            result = pipeline.ingest("game", SECRET, events, headers={"Referer": "https://r"})

        assert [outcome.ok for outcome in result.outcomes] == [True, False, True]
        with psycopg.connect(scratch_dsn) as conn:
            rows = conn.execute(
                'SELECT "time", "referer", "event_type", "score" FROM "events" ORDER BY "event_type"'
            ).fetchall()
        assert rows == [
            (GAME_START, "https://r", "game_start", None),
            (GAME_START, "https://r", "level", 7),
        ]

    def test_constraint_violation_is_a_per_event_storage_error(
        self, events_schema: Schema, scratch_dsn: str
    ):
        reconcile_database(events_schema, dsn=scratch_dsn)
        with psycopg.connect(scratch_dsn) as conn:
            conn.execute('ALTER TABLE "events" ADD CONSTRAINT "score_positive" CHECK (score > 0)')

        events = [
            {"_t": "events", "event_type": "a", "score": -1},
            {"_t": "events", "event_type": "b", "score": 1},
        ]
        with ConnectionPool(scratch_dsn, min_size=1, max_size=1, open=True) as pool:
            result = IngestionPipeline(events_schema, InsertExecutor(pool)).ingest(
                "game", SECRET, events
            )

        error = result.outcomes[0].error
        assert isinstance(error, StorageError)
        assert error.transient is False
        assert result.outcomes[1].ok

    @pytest.mark.asyncio
    async def test_async_pipeline_inserts(self, events_schema: Schema, scratch_dsn: str):
        reconcile_database(events_schema, dsn=scratch_dsn)
        events = [{"_t": "events", "event_type": f"e{i}", "score": i} for i in range(5)]

        async with AsyncConnectionPool(scratch_dsn, min_size=1, max_size=3, open=False) as pool:
            pipeline = AsyncIngestionPipeline(events_schema, AsyncInsertExecutor(pool))
            result = await pipeline.ingest("game", SECRET, events)

        assert result.accepted == 5
        with psycopg.connect(scratch_dsn) as conn:
            (count,) = conn.execute('SELECT count(*) FROM "events"').fetchone()
        assert count == 5
