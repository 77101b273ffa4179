"""Abstract cache store interface.

The cache store is the only shared mutable resource of the metrics pipeline.
Every operation touches exactly one key and is atomic for that key; callers
never rely on multi-key transactions.
"""

import json
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional


Ttl = Optional[timedelta | float]


def ttl_seconds(ttl: Ttl) -> Optional[float]:
    """Normalize a TTL given as timedelta or seconds; None means no expiry."""
    if ttl is None:
        return None
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


def encode_value(value: Any) -> str:
    """Serialize a cache value.

    Values are limited to JSON types so they read back the same from every
    store implementation.
    """
    return json.dumps(value, sort_keys=True)


def decode_value(raw: str) -> Any:
    return json.loads(raw)


class CacheStore(ABC):
    """Key-value store with per-key expiry."""

    @abstractmethod
    def read(self, key: str) -> Any:
        """Return the live value for key, or None."""
        pass

    @abstractmethod
    def write(self, key: str, value: Any, ttl: Ttl = None) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def write_if_absent(self, key: str, value: Any, ttl: Ttl = None) -> bool:
        """Store value only if key holds no live value. Returns True if written."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if a live value was removed."""
        pass

    @abstractmethod
    def increment(self, key: str, by: int = 1, ttl: Ttl = None) -> int:
        """Add ``by`` to an integer counter (missing counts as 0). Returns new value.

        The TTL is applied only when the counter is created.
        """
        pass

    @abstractmethod
    def add_to_set(self, key: str, member: Any, ttl: Ttl = None) -> bool:
        """Append member to the list stored under key unless already present.

        The TTL is refreshed on every call. Returns True if member was added.
        """
        pass

    @abstractmethod
    def pop(self, key: str) -> Any:
        """Remove key and return its live value (None if absent)."""
        pass

    @abstractmethod
    def delete_matched(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns how many were removed."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with prefix, sorted."""
        pass
