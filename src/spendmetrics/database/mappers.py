"""Mapper functions to convert SQLAlchemy models into domain entities."""

from decimal import Decimal

from spendmetrics.domain import entities as domain
from spendmetrics.database.models import (
    Account as ORMAccount,
    Category as ORMCategory,
    Expense as ORMExpense,
)


def account_to_domain(orm_account: ORMAccount) -> domain.Account:
    """Convert SQLAlchemy Account model to domain Account entity."""
    return domain.Account(
        id=orm_account.id,
        name=orm_account.name,
        bank_name=orm_account.bank_name,
        created_at=orm_account.created_at,
    )


def category_to_domain(orm_category: ORMCategory) -> domain.Category:
    """Convert SQLAlchemy Category model to domain Category entity."""
    return domain.Category(
        id=orm_category.id,
        name=orm_category.name,
        created_at=orm_category.created_at,
    )


def expense_to_domain(orm_expense: ORMExpense) -> domain.Expense:
    """Convert SQLAlchemy Expense model to domain Expense entity."""
    category = orm_expense.category
    return domain.Expense(
        id=orm_expense.id,
        account_id=orm_expense.account_id,
        amount=Decimal(orm_expense.amount),
        currency=orm_expense.currency,
        status=orm_expense.status,
        transaction_date=orm_expense.transaction_date,
        merchant_name=orm_expense.merchant_name,
        category_id=orm_expense.category_id,
        category_name=category.name if category is not None else None,
        description=orm_expense.description,
        created_at=orm_expense.created_at,
    )
