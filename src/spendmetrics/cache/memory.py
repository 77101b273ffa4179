"""In-process cache store."""

import threading
from datetime import datetime, timedelta
from typing import Any, Optional

from spendmetrics.cache.base import CacheStore, Ttl, decode_value, encode_value, ttl_seconds
from spendmetrics.utils.clock import Clock


class InMemoryCacheStore(CacheStore):
    """Thread-safe dictionary-backed store.

    Expiry is an explicit timestamp compared against the injected clock, so a
    FixedClock makes expiry fully deterministic.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()
        self._entries: dict[str, tuple[str, Optional[datetime]]] = {}
        self._lock = threading.RLock()

    def _expiry(self, ttl: Ttl) -> Optional[datetime]:
        seconds = ttl_seconds(ttl)
        if seconds is None:
            return None
        return self.clock.now() + timedelta(seconds=seconds)

    def _live(self, key: str) -> Optional[str]:
        """Return the raw live value, dropping the entry if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self.clock.now() >= expires_at:
            del self._entries[key]
            return None
        return raw

    def read(self, key: str) -> Any:
        with self._lock:
            raw = self._live(key)
        return None if raw is None else decode_value(raw)

    def write(self, key: str, value: Any, ttl: Ttl = None) -> None:
        raw = encode_value(value)
        with self._lock:
            self._entries[key] = (raw, self._expiry(ttl))

    def write_if_absent(self, key: str, value: Any, ttl: Ttl = None) -> bool:
        raw = encode_value(value)
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (raw, self._expiry(ttl))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key) is not None
            self._entries.pop(key, None)
            return existed

    def increment(self, key: str, by: int = 1, ttl: Ttl = None) -> int:
        with self._lock:
            raw = self._live(key)
            if raw is None:
                value = by
                expires_at = self._expiry(ttl)
            else:
                value = int(decode_value(raw)) + by
                expires_at = self._entries[key][1]
            self._entries[key] = (encode_value(value), expires_at)
            return value

    def add_to_set(self, key: str, member: Any, ttl: Ttl = None) -> bool:
        with self._lock:
            raw = self._live(key)
            members = [] if raw is None else list(decode_value(raw))
            added = member not in members
            if added:
                members.append(member)
            self._entries[key] = (encode_value(members), self._expiry(ttl))
            return added

    def pop(self, key: str) -> Any:
        with self._lock:
            raw = self._live(key)
            self._entries.pop(key, None)
        return None if raw is None else decode_value(raw)

    def delete_matched(self, prefix: str) -> int:
        with self._lock:
            matched = [key for key in self._entries if key.startswith(prefix)]
            removed = 0
            for key in matched:
                if self._live(key) is not None:
                    removed += 1
                self._entries.pop(key, None)
            return removed

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(
                key
                for key in list(self._entries)
                if key.startswith(prefix) and self._live(key) is not None
            )
