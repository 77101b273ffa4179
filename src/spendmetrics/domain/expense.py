"""Expense domain service."""

from datetime import date
from decimal import Decimal
from typing import Optional

from spendmetrics.database.base import Database
from spendmetrics.domain.entities import Expense as ExpenseEntity
from spendmetrics.domain.errors import (
    NotFoundError,
    ValidationError,
    account_not_found,
    expense_not_found,
)

EXPENSE_STATUSES = ("pending", "approved", "rejected", "reimbursed")


class ExpenseService:
    """Service for recording expenses.

    Every change that can move an aggregate is reported to the refresh gate
    (when one is configured) with the transaction date it touched.
    """

    def __init__(self, db: Database, gate=None):
        """Initialize expense service.

        Args:
            db: Database instance
            gate: Optional DebounceGate notified about changed dates
        """
        self.db = db
        self.gate = gate

    def add_expense(
        self,
        account_id: int,
        amount: Decimal,
        transaction_date: date,
        currency: str = "USD",
        status: str = "pending",
        merchant_name: Optional[str] = None,
        category_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        """Record an expense.

        A category given by name is created on first use.

        Returns:
            Expense ID

        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If currency or status is invalid
        """
        if self.db.get_account(account_id) is None:
            raise NotFoundError(account_not_found(account_id))
        self._validate_status(status)
        if not currency or len(currency.strip()) != 3:
            raise ValidationError(f"Invalid currency code: {currency}")

        category_id = self._category_id(category_name)
        expense_id = self.db.create_expense(
            account_id=account_id,
            amount=amount,
            transaction_date=transaction_date,
            currency=currency.strip().upper(),
            status=status,
            merchant_name=merchant_name,
            category_id=category_id,
            description=description,
        )
        self._notify(account_id, transaction_date)
        return expense_id

    def get_expense(self, expense_id: int) -> Optional[ExpenseEntity]:
        return self.db.get_expense(expense_id)

    def list_expenses(
        self,
        account_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ExpenseEntity]:
        return self.db.list_expenses(account_id, start_date, end_date)

    def categorize_expense(self, expense_id: int, category_name: Optional[str]) -> None:
        """Assign a category by name, or clear it with None.

        Raises:
            NotFoundError: If the expense does not exist
        """
        expense = self._require_expense(expense_id)
        self.db.update_expense_category(expense_id, self._category_id(category_name))
        self._notify(expense.account_id, expense.transaction_date)

    def update_status(self, expense_id: int, status: str) -> None:
        """Change an expense's status.

        Raises:
            NotFoundError: If the expense does not exist
            ValidationError: If status is invalid
        """
        self._validate_status(status)
        expense = self._require_expense(expense_id)
        self.db.update_expense_status(expense_id, status)
        self._notify(expense.account_id, expense.transaction_date)

    def _require_expense(self, expense_id: int) -> ExpenseEntity:
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(expense_not_found(expense_id))
        return expense

    def _category_id(self, category_name: Optional[str]) -> Optional[int]:
        if category_name is None or not category_name.strip():
            return None
        category = self.db.get_category_by_name(category_name.strip())
        if category is not None:
            return category.id
        return self.db.create_category(category_name.strip())

    @staticmethod
    def _validate_status(status: str) -> None:
        if status not in EXPENSE_STATUSES:
            raise ValidationError(
                f"Invalid status: {status}. Supported statuses: {', '.join(EXPENSE_STATUSES)}"
            )

    def _notify(self, account_id: int, transaction_date: date) -> None:
        if self.gate is not None:
            self.gate.trigger(account_id, transaction_date)
