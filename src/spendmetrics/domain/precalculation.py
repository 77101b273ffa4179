"""Periodic pre-calculation of metrics so dashboard reads hit the cache."""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from spendmetrics.cache.base import CacheStore
from spendmetrics.database.base import Database
from spendmetrics.domain.entities import Period
from spendmetrics.domain.errors import NotFoundError, account_not_found
from spendmetrics.domain.job_metrics import FAILURE, SUCCESS, JobMetricsRecorder
from spendmetrics.domain.metrics import MetricsCalculator
from spendmetrics.domain.periods import period_start
from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import get_logger

logger = get_logger(__name__)

JOB_TYPE = "metrics_calculation"
LOCK_TTL = timedelta(minutes=5)
SNAPSHOT_TTL = timedelta(hours=4)
MAX_EXECUTION_SECONDS = 30.0

# Step between warmed buckets, and how many past buckets are warmed per period.
LOOKBACK = {
    Period.DAY: relativedelta(days=1),
    Period.WEEK: relativedelta(weeks=1),
    Period.MONTH: relativedelta(months=1),
    Period.YEAR: relativedelta(years=1),
}
LOOKBACK_COUNT = {Period.DAY: 7, Period.WEEK: 4, Period.MONTH: 3, Period.YEAR: 1}


def calculation_lock_key(account_id: int) -> str:
    return f"metrics_calculation:{account_id}"


def generate_periods_and_dates(reference_date: date) -> list[tuple[Period, date]]:
    """Current and recent bucket dates for every period, oldest first."""
    pairs: list[tuple[Period, date]] = []
    for period, step in LOOKBACK.items():
        for back in range(LOOKBACK_COUNT[period], -1, -1):
            pairs.append((period, period_start(period, reference_date - step * back)))
    return pairs


@dataclass(frozen=True)
class CalculationRunResult:
    account_id: int
    skipped: bool = False
    calculated: int = 0
    failed: int = 0
    elapsed: float = 0.0


class MetricsCalculationJob:
    """Warm snapshot caches for one account (or schedule it for all)."""

    def __init__(
        self,
        db: Database,
        cache: CacheStore,
        recorder: Optional[JobMetricsRecorder] = None,
        clock: Optional[Clock] = None,
        lock_ttl: timedelta = LOCK_TTL,
        snapshot_ttl: timedelta = SNAPSHOT_TTL,
    ):
        self.db = db
        self.cache = cache
        self.clock = clock or Clock()
        self.recorder = recorder or JobMetricsRecorder(cache, self.clock)
        self.lock_ttl = lock_ttl
        self.snapshot_ttl = snapshot_ttl

    def perform(
        self,
        account_id: int,
        period: Optional[Period | str] = None,
        reference_date: Optional[date] = None,
        force_refresh: bool = False,
    ) -> CalculationRunResult:
        """Calculate one period, or every period's recent buckets.

        Raises:
            NotFoundError: If the account does not exist
        """
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        if period is not None:
            period = Period.parse(period)

        lock_key = calculation_lock_key(account_id)
        if not self.cache.write_if_absent(lock_key, self.clock.now().isoformat(), ttl=self.lock_ttl):
            logger.info(
                "MetricsCalculationJob skipped - another job is already processing account %s",
                account_id,
            )
            return CalculationRunResult(account_id=account_id, skipped=True)

        reference_date = reference_date or self.clock.today()
        started = self.clock.monotonic()
        status = FAILURE
        calculated = failed = 0
        try:
            if force_refresh:
                MetricsCalculator.clear_cache(self.cache, account_id)

            if period is not None:
                pairs = [(period, reference_date)]
            else:
                pairs = generate_periods_and_dates(reference_date)
                logger.info(
                    "Pre-calculating %s metric combinations for account %s",
                    len(pairs),
                    account_id,
                )

            for pair_period, pair_date in pairs:
                snapshot = MetricsCalculator(
                    self.db,
                    self.cache,
                    account,
                    period=pair_period,
                    reference_date=pair_date,
                    clock=self.clock,
                    cache_ttl=self.snapshot_ttl,
                ).calculate()
                if snapshot.get("error"):
                    failed += 1
                    logger.error(
                        "Metrics calculation failed for account %s, %s on %s: %s",
                        account_id,
                        pair_period.value,
                        pair_date,
                        snapshot["error"],
                    )
                else:
                    calculated += 1
                    logger.debug(
                        "Metrics calculated for account %s, %s on %s: %s transactions, total: $%.2f",
                        account_id,
                        pair_period.value,
                        pair_date,
                        snapshot["metrics"]["transaction_count"],
                        snapshot["metrics"]["total_amount"],
                    )
            status = SUCCESS
        except Exception as exc:
            logger.error("MetricsCalculationJob failed for account %s: %s", account_id, exc)
            raise
        finally:
            self.cache.delete(lock_key)
            elapsed = self.clock.monotonic() - started
            self.recorder.record(JOB_TYPE, account_id, elapsed, status, calculated)

        if elapsed > MAX_EXECUTION_SECONDS:
            logger.warning(
                "MetricsCalculationJob exceeded 30s target: %.2fs for account %s",
                elapsed,
                account_id,
            )
            self.recorder.record_slow_run(
                JOB_TYPE, account_id, elapsed, self.db.count_expenses(account_id)
            )
        else:
            logger.info(
                "MetricsCalculationJob completed in %.2fs for account %s", elapsed, account_id
            )

        return CalculationRunResult(
            account_id=account_id, calculated=calculated, failed=failed, elapsed=elapsed
        )

    def enqueue_for_all_accounts(self, scheduler, job_name: str = JOB_TYPE) -> int:
        """Schedule a run for every account. Returns how many were scheduled."""
        accounts = self.db.list_accounts()
        for account in accounts:
            scheduler.schedule(0, job_name, account_id=account.id)
        return len(accounts)
