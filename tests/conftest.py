"""
Pytest configuration for eventsink.

Provides fixtures for:
- Schema Models (the example schema file and small inline schemas)
- Settings override for integration tests
- Database connection management for integration tests
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Generator

import psycopg
import pytest
from psycopg.conninfo import make_conninfo

from eventsink.config import Settings
from eventsink.domain.schema import Schema, load_schema

ROOT = Path(__file__).parent.parent
EXAMPLE_SCHEMA_PATH = ROOT / "schema-example.conf.yaml"

SECRET = "K"

EVENTS_SCHEMA_YAML = f"""
tables:
  events:
    columns:
      - name: time
        type: timestamp
        indexed: true
      - name: referer
        header: Referer
      - name: event_type
        required: true
        indexed: true
      - name: score
        type: i32
  purchases:
    columns:
      - name: amount
        type: f64
        required: true
      - name: user_agent
        header: User-Agent
        required: true
  audit:
    columns:
      - name: note
apps:
  game:
    secret_key: {SECRET}
    access_control_allow_origin: https://game.example.com
    tables: [events, purchases]
  shop:
    secret_key: other-secret
    tables: [purchases]
"""


@pytest.fixture(scope="session")
def example_schema() -> Schema:
    """The schema shipped as schema-example.conf.yaml."""
    return load_schema(EXAMPLE_SCHEMA_PATH)


@pytest.fixture(scope="session")
def events_schema() -> Schema:
    """
    Small schema with body, header, required and indexed columns.

    ``audit`` exists but no app may write to it.
    """
    return Schema.from_yaml(EVENTS_SCHEMA_YAML)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "eventsink"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn()


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="function")
def scratch_dsn(test_dsn: str, db_connection_available: bool) -> Generator[str, None, None]:
    """
    DSN whose search_path points at a fresh, empty schema.

    Every table the test creates lives in that schema, which is dropped
    afterwards, so tests never see each other's tables.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    namespace = f"eventsink_test_{uuid.uuid4().hex[:12]}"
    with psycopg.connect(test_dsn, autocommit=True) as conn:
        conn.execute(f'CREATE SCHEMA "{namespace}"')
    try:
        yield make_conninfo(test_dsn, options=f"-c search_path={namespace}")
    finally:
        with psycopg.connect(test_dsn, autocommit=True) as conn:
            conn.execute(f'DROP SCHEMA "{namespace}" CASCADE')
