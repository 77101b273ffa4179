"""Shared domain error messages and error types."""


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class MissingAccountError(ValidationError):
    """An account is required but none was given."""


class InvalidPeriodError(ValidationError):
    """Period is not one of day, week, month or year."""


class CalculationError(DomainError):
    """Unexpected failure while aggregating metrics."""


def account_not_found(account_id: int) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def expense_not_found(expense_id: int) -> str:
    """Return message for missing expense."""
    return f"Expense {expense_id} not found"


def missing_affected_date(account_id: int) -> str:
    """Return message for a refresh trigger without a date."""
    return f"Affected date is required to refresh metrics for account {account_id}"
