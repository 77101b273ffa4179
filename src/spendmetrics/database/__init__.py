"""Database layer for spendmetrics."""

from spendmetrics.database.base import Database
from spendmetrics.database.factories import create_sqlite_database

__all__ = ["Database", "create_sqlite_database"]
