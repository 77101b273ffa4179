"""Cache store persisted in a SQL table.

Rows carry an explicit ``expires_at`` timestamp; expired rows are treated as
absent and removed lazily. Each operation runs in its own transaction, and
``write_if_absent`` relies on the primary key so two writers racing on the
same key cannot both succeed.
"""

import threading
from datetime import datetime, timedelta, UTC
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from spendmetrics.cache.base import CacheStore, Ttl, decode_value, encode_value, ttl_seconds
from spendmetrics.database.models import CacheEntry, create_session_factory
from spendmetrics.utils.clock import Clock


class SQLAlchemyCacheStore(CacheStore):
    """SQLAlchemy-backed implementation of CacheStore."""

    def __init__(self, database_url: str, clock: Optional[Clock] = None):
        """Initialize the store.

        Args:
            database_url: SQLAlchemy database URL; the ``cache_entries`` table
                is created if missing
            clock: Time source used for expiry
        """
        self.database_url = database_url
        self.clock = clock or Clock()
        self.session_factory = create_session_factory(database_url)
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return self.clock.now().astimezone(UTC).replace(tzinfo=None)

    def _expiry(self, ttl: Ttl) -> Optional[datetime]:
        seconds = ttl_seconds(ttl)
        if seconds is None:
            return None
        return self._now() + timedelta(seconds=seconds)

    def _live_row(self, session, key: str) -> Optional[CacheEntry]:
        row = session.get(CacheEntry, key)
        if row is None:
            return None
        if row.expires_at is not None and self._now() >= row.expires_at:
            session.delete(row)
            session.flush()
            return None
        return row

    def read(self, key: str) -> Any:
        with self._lock, self.session_factory() as session, session.begin():
            row = self._live_row(session, key)
            return None if row is None else decode_value(row.value)

    def write(self, key: str, value: Any, ttl: Ttl = None) -> None:
        raw = encode_value(value)
        with self._lock, self.session_factory() as session, session.begin():
            session.merge(CacheEntry(key=key, value=raw, expires_at=self._expiry(ttl)))

    def write_if_absent(self, key: str, value: Any, ttl: Ttl = None) -> bool:
        raw = encode_value(value)
        with self._lock, self.session_factory() as session:
            try:
                with session.begin():
                    if self._live_row(session, key) is not None:
                        return False
                    session.add(CacheEntry(key=key, value=raw, expires_at=self._expiry(ttl)))
            except IntegrityError:
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock, self.session_factory() as session, session.begin():
            existed = self._live_row(session, key) is not None
            session.execute(delete(CacheEntry).where(CacheEntry.key == key))
            return existed

    def increment(self, key: str, by: int = 1, ttl: Ttl = None) -> int:
        with self._lock, self.session_factory() as session, session.begin():
            row = self._live_row(session, key)
            if row is None:
                value = by
                session.add(
                    CacheEntry(key=key, value=encode_value(value), expires_at=self._expiry(ttl))
                )
            else:
                value = int(decode_value(row.value)) + by
                row.value = encode_value(value)
            return value

    def add_to_set(self, key: str, member: Any, ttl: Ttl = None) -> bool:
        with self._lock, self.session_factory() as session, session.begin():
            row = self._live_row(session, key)
            members = [] if row is None else list(decode_value(row.value))
            added = member not in members
            if added:
                members.append(member)
            if row is None:
                session.add(
                    CacheEntry(key=key, value=encode_value(members), expires_at=self._expiry(ttl))
                )
            else:
                row.value = encode_value(members)
                row.expires_at = self._expiry(ttl)
            return added

    def pop(self, key: str) -> Any:
        with self._lock, self.session_factory() as session, session.begin():
            row = self._live_row(session, key)
            if row is None:
                return None
            value = decode_value(row.value)
            session.delete(row)
            return value

    def delete_matched(self, prefix: str) -> int:
        with self._lock, self.session_factory() as session, session.begin():
            now = self._now()
            rows = session.scalars(
                select(CacheEntry).where(CacheEntry.key.startswith(prefix, autoescape=True))
            ).all()
            removed = sum(1 for row in rows if row.expires_at is None or now < row.expires_at)
            for row in rows:
                session.delete(row)
            return removed

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock, self.session_factory() as session:
            now = self._now()
            rows = session.scalars(
                select(CacheEntry)
                .where(CacheEntry.key.startswith(prefix, autoescape=True))
                .order_by(CacheEntry.key)
            ).all()
            return [row.key for row in rows if row.expires_at is None or now < row.expires_at]
