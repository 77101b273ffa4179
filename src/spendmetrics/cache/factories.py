"""Factory functions for creating cache store instances."""

from typing import Optional

from spendmetrics.cache.sqlalchemy_cache import SQLAlchemyCacheStore
from spendmetrics.config import resolve_database_path
from spendmetrics.utils.clock import Clock


def create_sqlite_cache(
    database_path: Optional[str] = None, clock: Optional[Clock] = None
) -> SQLAlchemyCacheStore:
    """Create a cache store sharing the SQLite file of the record store.

    Locks, debounce windows, snapshots and job telemetry then survive across
    separate CLI invocations.
    """
    database_path = resolve_database_path(database_path)
    return SQLAlchemyCacheStore(f"sqlite:///{database_path}", clock=clock)
