"""Runtime settings resolved from environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from spendmetrics.domain.errors import ValidationError


DB_PATH_ENV = "SPENDMETRICS_DB_PATH"


@dataclass(frozen=True)
class Settings:
    """Tunable timings for the metrics pipeline (all in seconds or days)."""

    debounce_seconds: int = 5
    lock_ttl_seconds: int = 60
    snapshot_ttl_seconds: int = 3600
    recent_window_days: int = 7
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings, letting SPENDMETRICS_* variables override defaults.

        Raises:
            ValidationError: If a numeric variable is not a non-negative integer
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            debounce_seconds=_int_env(env, "SPENDMETRICS_DEBOUNCE_SECONDS", defaults.debounce_seconds),
            lock_ttl_seconds=_int_env(env, "SPENDMETRICS_LOCK_TTL_SECONDS", defaults.lock_ttl_seconds),
            snapshot_ttl_seconds=_int_env(
                env, "SPENDMETRICS_SNAPSHOT_TTL_SECONDS", defaults.snapshot_ttl_seconds
            ),
            recent_window_days=_int_env(
                env, "SPENDMETRICS_RECENT_WINDOW_DAYS", defaults.recent_window_days
            ),
            log_level=env.get("SPENDMETRICS_LOG_LEVEL", defaults.log_level),
        )


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got '{raw}'") from None
    if value < 0:
        raise ValidationError(f"{name} must not be negative, got {value}")
    return value


def resolve_database_path(database_path: Optional[str] = None) -> str:
    """Resolve the SQLite file path.

    Checks the explicit argument, then SPENDMETRICS_DB_PATH, then defaults to
    ~/.spendmetrics/spendmetrics.db.
    """
    if database_path is None:
        database_path = os.environ.get(DB_PATH_ENV)

    if database_path is None:
        db_dir = Path.home() / ".spendmetrics"
        db_dir.mkdir(exist_ok=True)
        database_path = str(db_dir / "spendmetrics.db")

    return database_path
