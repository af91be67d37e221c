from __future__ import annotations

from typing import Any, Dict, List

import psycopg
import pytest

from eventsink.infrastructure import db_factory
from eventsink.infrastructure.db_factory import PoolManager, get_sync_connection


class _FakeConnectionPool:
    created: List[Dict[str, Any]] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.closed = False
        _FakeConnectionPool.created.append(kwargs)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fresh_manager(monkeypatch: pytest.MonkeyPatch) -> PoolManager:
    _FakeConnectionPool.created = []
    monkeypatch.setattr(PoolManager, "_instance", None)
    monkeypatch.setattr(db_factory, "ConnectionPool", _FakeConnectionPool)
    monkeypatch.setattr(db_factory, "AsyncConnectionPool", _FakeConnectionPool)
    return PoolManager()


def test_manager_is_a_singleton(fresh_manager: PoolManager):
    assert PoolManager() is fresh_manager


def test_sync_pool_is_created_once(fresh_manager: PoolManager):
    first = fresh_manager.get_sync_pool(
        dsn="postgresql://a/b", min_size=2, max_size=4, timeout=1.5
    )
    second = fresh_manager.get_sync_pool(dsn="postgresql://other/db")

    assert first is second
    assert _FakeConnectionPool.created == [
        {
            "open": True,
            "conninfo": "postgresql://a/b",
            "min_size": 2,
            "max_size": 4,
            "timeout": 1.5,
        }
    ]


def test_async_pool_is_created_closed(fresh_manager: PoolManager):
    fresh_manager.get_async_pool(dsn="postgresql://a/b", min_size=0, max_size=3)
    [options] = _FakeConnectionPool.created
    assert options["open"] is False
    assert options["min_size"] == 0


def test_module_helpers_pass_the_acquire_timeout(fresh_manager: PoolManager):
    db_factory.get_sync_pool(dsn="postgresql://a/b", min_size=1, max_size=2, timeout=2.5)
    db_factory.get_async_pool(dsn="postgresql://a/b", min_size=1, max_size=2, timeout=0.5)

    assert [options["timeout"] for options in _FakeConnectionPool.created] == [2.5, 0.5]


def test_close_all_releases_the_sync_pool(fresh_manager: PoolManager):
    pool = fresh_manager.get_sync_pool(dsn="postgresql://a/b", min_size=1, max_size=1)
    fresh_manager.close_all()

    assert pool.closed is True
    assert fresh_manager.get_sync_pool(dsn="postgresql://a/b", min_size=1, max_size=1) is not pool


def test_startup_connection_retries_transient_failures(monkeypatch: pytest.MonkeyPatch):
    attempts: List[str] = []
    sentinel = object()

    def _connect(dsn: str) -> Any:
        attempts.append(dsn)
        if len(attempts) < 3:
            raise psycopg.OperationalError("the database system is starting up")
        return sentinel

    monkeypatch.setattr(db_factory.psycopg, "connect", _connect)
    monkeypatch.setattr(get_sync_connection.retry, "sleep", lambda seconds: None)

    assert get_sync_connection("postgresql://a/b") is sentinel
    assert attempts == ["postgresql://a/b"] * 3


def test_startup_connection_gives_up(monkeypatch: pytest.MonkeyPatch):
    def _connect(dsn: str) -> Any:
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(db_factory.psycopg, "connect", _connect)
    monkeypatch.setattr(get_sync_connection.retry, "sleep", lambda seconds: None)

    with pytest.raises(psycopg.OperationalError, match="connection refused"):
        get_sync_connection("postgresql://a/b")
