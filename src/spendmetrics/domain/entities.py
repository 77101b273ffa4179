"""Domain model entities for spendmetrics.

These are pure data classes representing business concepts, independent of
database schema and of the cache store that holds computed snapshots.
"""

from dataclasses import dataclass
from datetime import datetime, date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from spendmetrics.domain.errors import CalculationError, InvalidPeriodError


UNCATEGORIZED = "Uncategorized"


class Period(str, Enum):
    """Aggregation granularity for metrics."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: "Period | str") -> "Period":
        """Coerce a string or Period into a Period.

        Raises:
            InvalidPeriodError: If value is not one of the supported periods
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(p.value for p in cls)
            raise InvalidPeriodError(
                f"Invalid period: {value}. Supported periods: {supported}"
            ) from None


SUPPORTED_PERIODS: tuple[Period, ...] = tuple(Period)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> list[date]:
        """Every date in the range, in order."""
        count = (self.end - self.start).days + 1
        return [self.start + timedelta(days=offset) for offset in range(count)]

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class Account:
    """Account whose expenses are aggregated."""

    id: int
    name: str
    bank_name: str
    created_at: datetime


@dataclass(frozen=True)
class Category:
    """Expense category."""

    id: int
    name: str
    created_at: datetime


@dataclass(frozen=True)
class Expense:
    """Financial record belonging to one account."""

    id: int
    account_id: int
    amount: Decimal
    currency: str
    status: str
    transaction_date: date
    merchant_name: Optional[str]
    category_id: Optional[int]
    category_name: Optional[str]
    description: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class CalculationResult:
    """Outcome of one metrics computation.

    Exactly one of ``snapshot`` and ``error`` is set, so callers can tell a
    computed all-zero snapshot apart from a failed computation.
    """

    snapshot: Optional[dict[str, Any]] = None
    error: Optional[CalculationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
