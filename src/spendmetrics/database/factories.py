"""Factory functions for creating database instances."""

from typing import Optional

from spendmetrics.config import resolve_database_path
from spendmetrics.database.sqlalchemy_db import SQLAlchemyDatabase


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite database instance.

    Args:
        database_path: Path to SQLite database file. If None, checks
            SPENDMETRICS_DB_PATH, then defaults to ~/.spendmetrics/spendmetrics.db

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    database_path = resolve_database_path(database_path)
    return SQLAlchemyDatabase(f"sqlite:///{database_path}")
