from __future__ import annotations

from typing import Iterator

import pytest

from eventsink.config import Settings, get_settings

_ENV_NAMES = (
    "DATABASE_URL",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "DB_NAME",
    "SCHEMA_FILE",
    "INGEST_CONCURRENCY",
    "MAX_EVENTS_PER_BATCH",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_dsn_is_composed_from_parts(clean_env: pytest.MonkeyPatch):
    settings = Settings(_env_file=None, db_host="db", db_port=6543, db_user="u", db_password="p")
    assert settings.dsn() == "postgresql://u:p@db:6543/eventsink"


def test_schema_database_url_is_used_as_fallback(clean_env: pytest.MonkeyPatch):
    settings = Settings(_env_file=None)
    assert settings.dsn("postgresql://schema/db") == "postgresql://schema/db"


def test_database_url_env_wins(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("DATABASE_URL", "postgresql://env/db")
    settings = Settings(_env_file=None)
    assert settings.dsn("postgresql://schema/db") == "postgresql://env/db"


def test_env_aliases_are_read(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("SCHEMA_FILE", "/etc/eventsink/schema.yaml")
    clean_env.setenv("INGEST_CONCURRENCY", "8")
    clean_env.setenv("MAX_EVENTS_PER_BATCH", "50")

    settings = get_settings()

    assert settings.schema_file == "/etc/eventsink/schema.yaml"
    assert settings.ingest_concurrency == 8
    assert settings.max_events_per_batch == 50
    assert get_settings() is settings


def test_invalid_limits_are_rejected(clean_env: pytest.MonkeyPatch):
    clean_env.setenv("INGEST_CONCURRENCY", "0")
    with pytest.raises(ValueError):
        Settings(_env_file=None)
