"""
Infrastructure package for eventsink.

Centralizes database connectivity concerns (pools, retrying startup
connections). Keep this layer focused on I/O and resource management,
decoupled from validation and pipeline logic.
"""

from eventsink.infrastructure.db_factory import (
    PoolManager,
    get_async_pool,
    get_sync_connection,
    get_sync_pool,
)

__all__ = [
    "PoolManager",
    "get_async_pool",
    "get_sync_connection",
    "get_sync_pool",
]
