"""
PostgreSQL connections for eventsink.

Two kinds of access exist:

- the insert pools (sync ``ConnectionPool`` for ``IngestionPipeline``, async
  ``AsyncConnectionPool`` for ``AsyncIngestionPipeline``), one per process,
  owned by the ``PoolManager`` singleton and closed at interpreter exit;
- one dedicated connection opened at startup by the schema reconciler,
  retried with tenacity while the database is still coming up.

Pool size and acquire timeout come from ``Settings`` unless given explicitly.
"""

from __future__ import annotations

import atexit
import threading
from typing import Any, Dict, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import AsyncConnectionPool, ConnectionPool
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from eventsink.config import get_settings
from eventsink.utils.logging import get_logger

log = get_logger(__name__)

CONNECT_ATTEMPTS = 3


def _pool_options(
    dsn: Optional[str],
    min_size: Optional[int],
    max_size: Optional[int],
    timeout: Optional[float],
) -> Dict[str, Any]:
    settings = get_settings()
    return {
        "conninfo": dsn or settings.dsn(),
        "min_size": settings.pool_min_size if min_size is None else min_size,
        "max_size": max_size or settings.pool_max_size,
        "timeout": timeout or settings.pool_timeout_seconds,
    }


class PoolManager:
    """
    Process-wide owner of the insert pools.

    The first ``get_sync_pool`` / ``get_async_pool`` call decides the DSN and
    sizing of that pool; later calls return the same object whatever they
    pass.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._sync_pool = None
                instance._async_pool = None
                atexit.register(instance.close_all)
                cls._instance = instance
            return cls._instance

    def get_sync_pool(
        self,
        dsn: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> ConnectionPool:
        """
        Return the sync pool, opening it on first use.

        Parameters
        ----------
        dsn : str | None
            Connection string; defaults to ``Settings.dsn()``.
        min_size, max_size : int | None
            Pool bounds; default to ``POOL_MIN_SIZE`` / ``POOL_MAX_SIZE``.
        timeout : float | None
            Seconds an insert waits for a free connection before the pool
            raises ``PoolTimeout`` (reported as a transient storage error).
        """
        with self._lock:
            if self._sync_pool is None:
                options = _pool_options(dsn, min_size, max_size, timeout)
                self._sync_pool = ConnectionPool(open=True, **options)
                log.info(
                    "Insert pool opened",
                    extra={
                        "pool": "sync",
                        "min_size": options["min_size"],
                        "max_size": options["max_size"],
                    },
                )
            return self._sync_pool

    def get_async_pool(
        self,
        dsn: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> AsyncConnectionPool:
        """
        Return the async pool, created closed.

        Open it with ``await pool.open()`` on the event loop that serves
        requests; psycopg binds the pool's workers to that loop.
        """
        with self._lock:
            if self._async_pool is None:
                self._async_pool = AsyncConnectionPool(
                    open=False, **_pool_options(dsn, min_size, max_size, timeout)
                )
            return self._async_pool

    async def close_async(self) -> None:
        pool, self._async_pool = self._async_pool, None
        if pool is not None:
            await pool.close()
            log.info("Insert pool closed", extra={"pool": "async"})

    def close_all(self) -> None:
        """Close the sync pool; registered with ``atexit``."""
        with self._lock:
            pool, self._sync_pool = self._sync_pool, None
        if pool is None:
            return
        try:
            pool.close()
        except psycopg.Error as exc:
            log.warning("Failed to close insert pool", extra={"error": str(exc)})


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "Database not reachable; retrying",
        extra={"attempt": state.attempt_number, "error": str(exc)},
    )


@retry(
    stop=stop_after_attempt(CONNECT_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    before_sleep=_log_retry,
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Open the reconciler's startup connection.

    Connection failures are retried with exponential backoff; the last
    ``psycopg.OperationalError`` is re-raised once attempts run out.
    """
    return psycopg.connect(dsn or get_settings().dsn())


def get_sync_pool(
    dsn: Optional[str] = None,
    min_size: Optional[int] = None,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> ConnectionPool:
    return PoolManager().get_sync_pool(
        dsn=dsn, min_size=min_size, max_size=max_size, timeout=timeout
    )


def get_async_pool(
    dsn: Optional[str] = None,
    min_size: Optional[int] = None,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> AsyncConnectionPool:
    return PoolManager().get_async_pool(
        dsn=dsn, min_size=min_size, max_size=max_size, timeout=timeout
    )


__all__ = [
    "PoolManager",
    "get_async_pool",
    "get_sync_connection",
    "get_sync_pool",
]
