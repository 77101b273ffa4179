"""Expense metrics calculation with caching and trend analysis.

A snapshot covers one account, one period and the period instance that
contains the reference date. It is a plain JSON-compatible dictionary so it
can be stored in any cache store and read back unchanged.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Sequence

from spendmetrics.cache.base import CacheStore
from spendmetrics.database.base import Database
from spendmetrics.domain.entities import (
    SUPPORTED_PERIODS,
    UNCATEGORIZED,
    Account,
    CalculationResult,
    Expense,
    Period,
)
from spendmetrics.domain.errors import CalculationError, MissingAccountError
from spendmetrics.domain.periods import (
    period_range,
    period_start,
    previous_period_range,
    to_date,
)
from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import get_logger

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "metrics_calculator"
CACHE_EXPIRY = timedelta(hours=1)
PERFORMANCE_TARGET_SECONDS = 0.1

_CENT = Decimal("0.01")


def snapshot_cache_key(account_id: int, period: Period | str, reference_date: date) -> str:
    """Cache key of the snapshot for the period instance containing reference_date.

    Keys use the bucket date, so every reference date inside one period maps
    to the same snapshot.
    """
    period = Period.parse(period)
    bucket = period_start(period, to_date(reference_date))
    return f"{CACHE_KEY_PREFIX}:account_{account_id}:{period.value}:{bucket.isoformat()}"


def _round2(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def _percentage_change(current: Decimal, previous: Decimal) -> float:
    if previous == 0:
        return 0.0
    return _round2((current - previous) / previous * 100)


def _average(total: Decimal, count: int) -> Decimal:
    if count == 0:
        return Decimal("0")
    return total / count


def _median(amounts: Sequence[Decimal]) -> float:
    ordered = sorted(amounts)
    if not ordered:
        return 0.0
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return float(ordered[mid])
    return _round2((ordered[mid - 1] + ordered[mid]) / 2)


def _percentages_of_total(totals: Sequence[Decimal], grand_total: Decimal) -> list[float]:
    """Share of grand_total per entry, in percent with two decimals.

    For non-negative totals the shares are apportioned by largest remainder
    so they add up to exactly 100.00.
    """
    if grand_total == 0:
        return [0.0 for _ in totals]

    raw = [total / grand_total * 10000 for total in totals]
    if grand_total < 0 or any(value < 0 for value in raw):
        return [_round2(value / 100) for value in raw]

    hundredths = [int(value) for value in raw]
    leftover = 10000 - sum(hundredths)
    by_remainder = sorted(range(len(raw)), key=lambda i: raw[i] - hundredths[i], reverse=True)
    for index in by_remainder[: max(leftover, 0)]:
        hundredths[index] += 1
    return [value / 100 for value in hundredths]


def default_metrics() -> dict[str, Any]:
    return {
        "total_amount": 0.0,
        "transaction_count": 0,
        "average_amount": 0.0,
        "median_amount": 0.0,
        "min_amount": 0.0,
        "max_amount": 0.0,
        "unique_merchants": 0,
        "unique_categories": 0,
        "uncategorized_count": 0,
        "by_status": {},
        "by_currency": {},
    }


def default_trends() -> dict[str, Any]:
    return {
        "amount_change": 0.0,
        "count_change": 0.0,
        "average_change": 0.0,
        "absolute_amount_change": 0.0,
        "absolute_count_change": 0,
        "is_increase": False,
        "previous_period_total": 0.0,
        "previous_period_count": 0,
    }


class MetricsCalculator:
    """Calculate and cache expense metrics for one account and period."""

    def __init__(
        self,
        db: Database,
        cache: CacheStore,
        account: Optional[Account],
        period: Period | str = Period.MONTH,
        reference_date: Optional[date] = None,
        clock: Optional[Clock] = None,
        cache_ttl: timedelta = CACHE_EXPIRY,
    ):
        """Initialize the calculator.

        Args:
            db: Record store to read expenses from
            cache: Cache store for snapshots
            account: Account whose expenses are aggregated
            period: One of day, week, month, year
            reference_date: Any date inside the period; defaults to today
            clock: Time source
            cache_ttl: Lifetime of the cached snapshot

        Raises:
            MissingAccountError: If account is None
            InvalidPeriodError: If period is not supported
        """
        if account is None:
            raise MissingAccountError("Account is required for metrics calculation")

        self.db = db
        self.cache = cache
        self.account = account
        self.clock = clock or Clock()
        self.period = Period.parse(period)
        self.reference_date = (
            to_date(reference_date) if reference_date is not None else self.clock.today()
        )
        self.cache_ttl = cache_ttl
        self.bucket_date = period_start(self.period, self.reference_date)
        self.cache_key = snapshot_cache_key(account.id, self.period, self.reference_date)
        self.date_range = period_range(self.period, self.reference_date)
        self.previous_date_range = previous_period_range(self.period, self.reference_date)

    def calculate(self) -> dict[str, Any]:
        """Return the snapshot, computing and caching it on a cache miss.

        Never returns a partial structure: when the computation fails the
        result is a zeroed snapshot with ``error`` set, and it is not cached.
        """
        cached = self.cache.read(self.cache_key)
        if cached is not None:
            return cached

        result = self.compute()
        if result.ok:
            self.cache.write(self.cache_key, result.snapshot, ttl=self.cache_ttl)
            return result.snapshot
        return self.degraded_snapshot(str(result.error))

    def recalculate(self) -> dict[str, Any]:
        """Drop the cached snapshot and compute a fresh one."""
        self.cache.delete(self.cache_key)
        return self.calculate()

    def compute(self) -> CalculationResult:
        """Compute the snapshot without touching the cache."""
        started = self.clock.monotonic()
        try:
            snapshot = self._build_snapshot()
        except Exception as exc:
            logger.exception(
                "MetricsCalculator error for account %s, %s period on %s: %s",
                self.account.id,
                self.period.value,
                self.reference_date,
                exc,
            )
            error = CalculationError(str(exc) or exc.__class__.__name__)
            error.__cause__ = exc
            return CalculationResult(error=error)

        elapsed = self.clock.monotonic() - started
        if elapsed > PERFORMANCE_TARGET_SECONDS:
            logger.warning(
                "MetricsCalculator exceeded 100ms target: %.2fms for %s period",
                elapsed * 1000,
                self.period.value,
            )
        return CalculationResult(snapshot=snapshot)

    def degraded_snapshot(self, error: str) -> dict[str, Any]:
        """Zeroed snapshot carrying an error message."""
        return {
            "period": self.period.value,
            "reference_date": self.bucket_date.isoformat(),
            "date_range": self.date_range.to_dict(),
            "error": error,
            "metrics": default_metrics(),
            "trends": default_trends(),
            "category_breakdown": [],
            "daily_breakdown": {},
            "calculated_at": self.clock.now().isoformat(),
        }

    @staticmethod
    def clear_cache(cache: CacheStore, account_id: Optional[int] = None) -> int:
        """Delete cached snapshots for one account, or for every account."""
        if account_id is None:
            return cache.delete_matched(f"{CACHE_KEY_PREFIX}:")
        return cache.delete_matched(f"{CACHE_KEY_PREFIX}:account_{account_id}:")

    @classmethod
    def pre_calculate_all(
        cls,
        db: Database,
        cache: CacheStore,
        account: Optional[Account],
        reference_date: Optional[date] = None,
        clock: Optional[Clock] = None,
    ) -> dict[str, dict[str, Any]]:
        """Calculate every supported period for one reference date."""
        if account is None:
            raise MissingAccountError("Account is required for pre-calculation")
        return {
            period.value: cls(
                db, cache, account, period=period, reference_date=reference_date, clock=clock
            ).calculate()
            for period in SUPPORTED_PERIODS
        }

    def _build_snapshot(self) -> dict[str, Any]:
        expenses = self.db.list_expenses(
            self.account.id, self.date_range.start, self.date_range.end
        )
        previous = self.db.summarize_expenses(
            self.account.id, self.previous_date_range.start, self.previous_date_range.end
        )
        total = sum((exp.amount for exp in expenses), Decimal("0"))

        return {
            "period": self.period.value,
            "reference_date": self.bucket_date.isoformat(),
            "date_range": self.date_range.to_dict(),
            "error": None,
            "metrics": self._calculate_metrics(expenses, total),
            "trends": self._calculate_trends(total, len(expenses), previous),
            "category_breakdown": self._calculate_category_breakdown(expenses, total),
            "daily_breakdown": self._calculate_daily_breakdown(expenses),
            "calculated_at": self.clock.now().isoformat(),
        }

    def _calculate_metrics(self, expenses: Sequence[Expense], total: Decimal) -> dict[str, Any]:
        if not expenses:
            return default_metrics()

        amounts = [exp.amount for exp in expenses]
        by_status: dict[str, int] = defaultdict(int)
        by_currency: dict[str, Decimal] = defaultdict(Decimal)
        for exp in expenses:
            by_status[exp.status] += 1
            by_currency[exp.currency] += exp.amount

        return {
            "total_amount": float(total),
            "transaction_count": len(expenses),
            "average_amount": _round2(_average(total, len(expenses))),
            "median_amount": _median(amounts),
            "min_amount": float(min(amounts)),
            "max_amount": float(max(amounts)),
            "unique_merchants": len({exp.merchant_name for exp in expenses if exp.merchant_name}),
            "unique_categories": len(
                {exp.category_id for exp in expenses if exp.category_id is not None}
            ),
            "uncategorized_count": sum(1 for exp in expenses if exp.category_id is None),
            "by_status": dict(by_status),
            "by_currency": {currency: float(value) for currency, value in by_currency.items()},
        }

    def _calculate_trends(
        self, total: Decimal, count: int, previous: dict[str, Any]
    ) -> dict[str, Any]:
        """Compare with the previous period; a zero previous total reports no change."""
        previous_total = Decimal(previous["total"])
        previous_count = int(previous["count"])
        current_average = _average(total, count).quantize(_CENT, rounding=ROUND_HALF_UP)
        previous_average = _average(previous_total, previous_count).quantize(
            _CENT, rounding=ROUND_HALF_UP
        )

        return {
            "amount_change": _percentage_change(total, previous_total),
            "count_change": _percentage_change(Decimal(count), Decimal(previous_count)),
            "average_change": _percentage_change(current_average, previous_average),
            "absolute_amount_change": float(total - previous_total),
            "absolute_count_change": count - previous_count,
            "is_increase": previous_total != 0 and total > previous_total,
            "previous_period_total": float(previous_total),
            "previous_period_count": previous_count,
        }

    def _calculate_category_breakdown(
        self, expenses: Sequence[Expense], total: Decimal
    ) -> list[dict[str, Any]]:
        groups: dict[str, list[Decimal]] = defaultdict(list)
        for exp in expenses:
            groups[exp.category_name or UNCATEGORIZED].append(exp.amount)

        ordered = sorted(groups.items(), key=lambda item: (-sum(item[1]), item[0]))
        group_totals = [sum(amounts, Decimal("0")) for _, amounts in ordered]
        percentages = _percentages_of_total(group_totals, total)

        breakdown = []
        for (name, amounts), group_total, percentage in zip(ordered, group_totals, percentages):
            breakdown.append(
                {
                    "category": name,
                    "total_amount": float(group_total),
                    "transaction_count": len(amounts),
                    "average_amount": _round2(_average(group_total, len(amounts))),
                    "min_amount": float(min(amounts)),
                    "max_amount": float(max(amounts)),
                    "percentage_of_total": percentage,
                }
            )
        return breakdown

    def _calculate_daily_breakdown(self, expenses: Sequence[Expense]) -> dict[str, float]:
        if self.period not in (Period.WEEK, Period.MONTH):
            return {}

        daily: dict[date, Decimal] = {day: Decimal("0") for day in self.date_range.days()}
        for exp in expenses:
            if exp.transaction_date in daily:
                daily[exp.transaction_date] += exp.amount
        return {day.isoformat(): float(value) for day, value in daily.items()}
