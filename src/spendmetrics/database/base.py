"""Abstract record store interface."""

from abc import ABC, abstractmethod
from typing import Optional, Any
from datetime import date
from decimal import Decimal

# Import entities directly to avoid circular import through domain/__init__.py
from spendmetrics.domain.entities import Account, Category, Expense


class Database(ABC):
    """Abstract database interface for spendmetrics.

    The metrics pipeline only reads from it; accounts and expenses are written
    by ingestion (here: the CLI and tests).
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the database."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the database."""
        pass

    @abstractmethod
    def initialize_schema(self) -> None:
        """Initialize database schema (create tables)."""
        pass

    # Account operations
    @abstractmethod
    def create_account(self, name: str, bank_name: str) -> int:
        """Create a new account. Returns account ID."""
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        """Get account by ID."""
        pass

    @abstractmethod
    def list_accounts(self) -> list[Account]:
        """List all accounts."""
        pass

    # Category operations
    @abstractmethod
    def create_category(self, name: str) -> int:
        """Create a category. Returns category ID."""
        pass

    @abstractmethod
    def get_category_by_name(self, name: str) -> Optional[Category]:
        """Get category by exact name."""
        pass

    # Expense operations
    @abstractmethod
    def create_expense(
        self,
        account_id: int,
        amount: Decimal,
        transaction_date: date,
        currency: str = "USD",
        status: str = "pending",
        merchant_name: Optional[str] = None,
        category_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> int:
        """Create an expense. Returns expense ID."""
        pass

    @abstractmethod
    def get_expense(self, expense_id: int) -> Optional[Expense]:
        """Get expense by ID."""
        pass

    @abstractmethod
    def update_expense_category(self, expense_id: int, category_id: Optional[int]) -> None:
        """Set or clear an expense's category."""
        pass

    @abstractmethod
    def update_expense_status(self, expense_id: int, status: str) -> None:
        """Update an expense's status."""
        pass

    @abstractmethod
    def list_expenses(
        self,
        account_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Expense]:
        """List one account's expenses within an inclusive date range."""
        pass

    @abstractmethod
    def summarize_expenses(
        self,
        account_id: int,
        start_date: date,
        end_date: date,
    ) -> dict[str, Any]:
        """Aggregate one account's expenses in a range.

        Returns a dictionary with ``total`` (Decimal) and ``count`` (int).
        """
        pass

    @abstractmethod
    def count_expenses(self, account_id: int) -> int:
        """Count all expenses of an account."""
        pass
