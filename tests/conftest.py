"""Shared pytest fixtures for spendmetrics tests."""

import os
import tempfile
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from spendmetrics.cache.memory import InMemoryCacheStore
from spendmetrics.config import Settings
from spendmetrics.database.factories import create_sqlite_database
from spendmetrics.domain.account import AccountService
from spendmetrics.jobs.scheduler import InProcessScheduler
from spendmetrics.pipeline import MetricsPipeline
from spendmetrics.utils.clock import FixedClock


# Thursday; its week starts on Monday 2024-06-17.
NOW = datetime(2024, 6, 20, 12, 0, tzinfo=UTC)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def clock():
    """A clock pinned to NOW."""
    return FixedClock(NOW)


@pytest.fixture
def cache(clock):
    """An in-memory cache store driven by the fixed clock."""
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def scheduler(clock):
    return InProcessScheduler(clock=clock)


@pytest.fixture
def account_service(temp_db):
    """Create an AccountService with a temporary database."""
    return AccountService(temp_db)


@pytest.fixture
def sample_account(account_service):
    """Create a sample account for testing."""
    account_id = account_service.create_account(name="Test Account", bank_name="Test Bank")
    return account_service.get_account(account_id)


@pytest.fixture
def add_expense(temp_db):
    """Insert an expense directly, bypassing the refresh trigger."""

    def _add(account_id, amount, on, category=None, merchant=None, status="approved", currency="USD"):
        category_id = None
        if category is not None:
            existing = temp_db.get_category_by_name(category)
            category_id = existing.id if existing else temp_db.create_category(category)
        return temp_db.create_expense(
            account_id=account_id,
            amount=Decimal(str(amount)),
            transaction_date=on if isinstance(on, date) else date.fromisoformat(on),
            currency=currency,
            status=status,
            merchant_name=merchant,
            category_id=category_id,
        )

    return _add


@pytest.fixture
def june_expenses(sample_account, add_expense):
    """Two June expenses (150.00 total) and one May expense (100.00)."""
    add_expense(sample_account.id, "100.00", "2024-06-05", category="Food", merchant="Grocer")
    add_expense(sample_account.id, "50.00", "2024-06-15", category="Transport", merchant="Metro")
    add_expense(sample_account.id, "100.00", "2024-05-10", category="Food", merchant="Grocer")
    return sample_account


@pytest.fixture
def pipeline(temp_db, cache, clock):
    """Fully wired services on the temporary database and in-memory cache."""
    return MetricsPipeline.build(temp_db, cache, settings=Settings(), clock=clock)


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
