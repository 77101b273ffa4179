"""Cache stores used for snapshots, locks, debounce windows and job telemetry."""

from spendmetrics.cache.base import CacheStore
from spendmetrics.cache.memory import InMemoryCacheStore

__all__ = ["CacheStore", "InMemoryCacheStore"]
