"""Debounced, lock-protected metrics refresh.

Expense changes call ``DebounceGate.trigger`` with the date they touched.
The first trigger for an account opens a debounce window and schedules one
``MetricsRefreshJob``; further triggers inside the window only add their date
to the account's pending set. When the job runs it takes the account's
refresh lock, drains the pending dates, and recomputes every affected
(period, bucket date) snapshot.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

from spendmetrics.cache.base import CacheStore
from spendmetrics.database.base import Database
from spendmetrics.domain.entities import SUPPORTED_PERIODS, Period
from spendmetrics.domain.errors import NotFoundError, ValidationError, account_not_found, missing_affected_date
from spendmetrics.domain.job_metrics import FAILURE, SUCCESS, JobMetricsRecorder
from spendmetrics.domain.metrics import CACHE_EXPIRY, MetricsCalculator, snapshot_cache_key
from spendmetrics.domain.periods import period_start, to_date
from spendmetrics.jobs.scheduler import JobScheduler, ScheduledJob
from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import get_logger

logger = get_logger(__name__)

JOB_TYPE = "metrics_refresh"
DEBOUNCE_WINDOW = timedelta(seconds=5)
LOCK_TTL = timedelta(seconds=60)
RECENT_WINDOW_DAYS = 7
MAX_EXECUTION_SECONDS = 30.0


def refresh_lock_key(account_id: int) -> str:
    return f"metrics_refresh:{account_id}"


def pending_dates_key(account_id: int) -> str:
    return f"metrics_refresh_dates:{account_id}"


def debounce_marker_key(account_id: int) -> str:
    return f"metrics_refresh_debounce:{account_id}"


def _require_date(account_id: int, value: Any) -> date:
    if value is None:
        raise ValidationError(missing_affected_date(account_id))
    try:
        return to_date(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid affected date '{value}': {exc}") from None


def determine_affected_periods(
    affected_dates: Iterable[date],
    today: date,
    recent_window_days: int = RECENT_WINDOW_DAYS,
) -> list[tuple[Period, date]]:
    """Map affected dates to the (period, bucket date) pairs they change.

    A date inside the recent window also marks today's buckets, because a
    late record for a near-past date can move current-period totals. With no
    dates at all, today's buckets are refreshed.
    """
    pairs: dict[tuple[Period, date], None] = {}
    current_buckets = [(period, period_start(period, today)) for period in SUPPORTED_PERIODS]
    recent_cutoff = today - timedelta(days=recent_window_days)

    dates = list(affected_dates)
    if not dates:
        return current_buckets

    for day in dates:
        for period in SUPPORTED_PERIODS:
            pairs[(period, period_start(period, day))] = None
        if day >= recent_cutoff:
            for pair in current_buckets:
                pairs[pair] = None

    order = {period: index for index, period in enumerate(SUPPORTED_PERIODS)}
    return sorted(pairs, key=lambda pair: (order[pair[0]], pair[1]))


class DebounceState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class DebounceGate:
    """Coalesce refresh triggers per account into one scheduled job per window."""

    def __init__(
        self,
        cache: CacheStore,
        scheduler: JobScheduler,
        clock: Optional[Clock] = None,
        window: timedelta = DEBOUNCE_WINDOW,
        dates_grace: timedelta = LOCK_TTL,
        job_name: str = JOB_TYPE,
    ):
        """Initialize the gate.

        Args:
            cache: Store holding the debounce marker and pending dates
            scheduler: Where the refresh job is scheduled
            clock: Time source
            window: Debounce interval; the job runs when it elapses
            dates_grace: Extra lifetime of the pending-date set past the
                window, so the job still finds it when it starts late
            job_name: Scheduler job name of the refresh job
        """
        self.cache = cache
        self.scheduler = scheduler
        self.clock = clock or Clock()
        self.window = window
        self.dates_grace = dates_grace
        self.job_name = job_name

    def state(self, account_id: int) -> DebounceState:
        marker = self.cache.read(debounce_marker_key(account_id))
        if marker is None:
            return DebounceState.IDLE
        expires_at = datetime.fromisoformat(marker["expires_at"])
        return DebounceState.PENDING if self.clock.now() < expires_at else DebounceState.IDLE

    def trigger(self, account_id: int, affected_date: date | str | None) -> Optional[ScheduledJob]:
        """Record an affected date and schedule a refresh if none is pending.

        Returns the scheduled job, or None when the trigger was coalesced into
        an already pending one.

        Raises:
            ValidationError: If affected_date is missing or not a date
        """
        day = _require_date(account_id, affected_date)
        self.requeue(account_id, [day])

        job = self._open_window(account_id, self.window)
        if job is None:
            logger.debug("MetricsRefreshJob debounced for account %s (%s)", account_id, day)
        return job

    def requeue(
        self, account_id: int, dates: Iterable[date], delay: Optional[timedelta] = None
    ) -> None:
        """Put dates back into the pending set, alive until a run after delay."""
        ttl = (delay or self.window) + self.dates_grace
        for day in dates:
            self.cache.add_to_set(pending_dates_key(account_id), day.isoformat(), ttl=ttl)

    def defer(self, account_id: int, delay: timedelta) -> Optional[ScheduledJob]:
        """Schedule a follow-up run for dates a skipped run left behind.

        Returns None when nothing is pending or a run is already scheduled.
        """
        dates = self.pending_dates(account_id)
        if not dates:
            return None
        self.requeue(account_id, dates, delay)
        return self._open_window(account_id, delay)

    def _open_window(self, account_id: int, delay: timedelta) -> Optional[ScheduledJob]:
        now = self.clock.now()
        marker = {"scheduled_at": now.isoformat(), "expires_at": (now + delay).isoformat()}
        if not self.cache.write_if_absent(debounce_marker_key(account_id), marker, ttl=delay):
            return None

        job = self.scheduler.schedule(delay, self.job_name, account_id=account_id)
        logger.info(
            "MetricsRefreshJob scheduled for account %s in %.1fs",
            account_id,
            delay.total_seconds(),
        )
        return job

    def pending_dates(self, account_id: int) -> list[date]:
        stored = self.cache.read(pending_dates_key(account_id)) or []
        return sorted(to_date(value) for value in stored)

    def drain(self, account_id: int) -> list[date]:
        """Take and clear the pending dates of an account."""
        stored = self.cache.pop(pending_dates_key(account_id)) or []
        return sorted(to_date(value) for value in stored)


@dataclass(frozen=True)
class RefreshResult:
    """What one refresh job run did."""

    account_id: int
    skipped: bool = False
    pairs: tuple[tuple[Period, date], ...] = field(default_factory=tuple)
    errors: tuple[str, ...] = field(default_factory=tuple)
    elapsed: float = 0.0


class MetricsRefreshJob:
    """Recompute and re-cache snapshots affected by a set of dates."""

    def __init__(
        self,
        db: Database,
        cache: CacheStore,
        recorder: Optional[JobMetricsRecorder] = None,
        gate: Optional[DebounceGate] = None,
        clock: Optional[Clock] = None,
        lock_ttl: timedelta = LOCK_TTL,
        snapshot_ttl: timedelta = CACHE_EXPIRY,
        recent_window_days: int = RECENT_WINDOW_DAYS,
        calculator_class: type[MetricsCalculator] = MetricsCalculator,
    ):
        self.db = db
        self.cache = cache
        self.clock = clock or Clock()
        self.recorder = recorder or JobMetricsRecorder(cache, self.clock)
        self.gate = gate
        self.lock_ttl = lock_ttl
        self.snapshot_ttl = snapshot_ttl
        self.recent_window_days = recent_window_days
        self.calculator_class = calculator_class

    def perform(
        self,
        account_id: int,
        affected_dates: Optional[Iterable[date | str]] = None,
    ) -> RefreshResult:
        """Run the refresh for one account.

        Lock contention is not an error: the run is skipped and logged. Any
        exception while recomputing is recorded as a failed execution and
        re-raised for the scheduler's retry; the lock is released either way.

        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If an affected date is missing or invalid
        """
        account = self.db.get_account(account_id)
        if account is None:
            raise NotFoundError(account_not_found(account_id))
        dates = [_require_date(account_id, value) for value in (affected_dates or [])]

        lock_key = refresh_lock_key(account_id)
        if not self.cache.write_if_absent(lock_key, self.clock.now().isoformat(), ttl=self.lock_ttl):
            logger.info(
                "MetricsRefreshJob skipped - another job is already processing account %s",
                account_id,
            )
            if self.gate is not None:
                self.gate.defer(account_id, self._lock_remaining(lock_key))
            return RefreshResult(account_id=account_id, skipped=True)

        started = self.clock.monotonic()
        status = FAILURE
        processed = 0
        errors: list[str] = []
        pairs: list[tuple[Period, date]] = []
        drained: list[date] = []
        try:
            if self.gate is not None:
                drained = self.gate.drain(account_id)
                dates.extend(drained)
            pairs = determine_affected_periods(
                dates, self.clock.today(), self.recent_window_days
            )
            logger.info(
                "Refreshing metrics for account %s, periods: %s",
                account_id,
                sorted({period.value for period, _ in pairs}),
            )

            for period, bucket in pairs:
                self.cache.delete(snapshot_cache_key(account_id, period, bucket))
                calculator = self.calculator_class(
                    self.db,
                    self.cache,
                    account,
                    period=period,
                    reference_date=bucket,
                    clock=self.clock,
                    cache_ttl=self.snapshot_ttl,
                )
                snapshot = calculator.calculate()
                if snapshot.get("error"):
                    errors.append(f"{period.value}:{bucket.isoformat()}: {snapshot['error']}")
                    logger.error(
                        "Metrics refresh failed for account %s, %s on %s: %s",
                        account_id,
                        period.value,
                        bucket,
                        snapshot["error"],
                    )
                processed += 1
            status = SUCCESS
        except Exception as exc:
            logger.error("MetricsRefreshJob failed for account %s: %s", account_id, exc)
            # Retries only carry the account id; they find these dates in the set.
            if drained:
                self.gate.requeue(account_id, drained)
            raise
        finally:
            self.cache.delete(lock_key)
            elapsed = self.clock.monotonic() - started
            self.recorder.record(JOB_TYPE, account_id, elapsed, status, processed)

        if elapsed > MAX_EXECUTION_SECONDS:
            logger.warning(
                "MetricsRefreshJob exceeded 30s target: %.2fs for account %s",
                elapsed,
                account_id,
            )
        else:
            logger.info(
                "MetricsRefreshJob completed in %.2fs - refreshed %s metric sets",
                elapsed,
                processed,
            )

        return RefreshResult(
            account_id=account_id,
            pairs=tuple(pairs),
            errors=tuple(errors),
            elapsed=elapsed,
        )

    def _lock_remaining(self, lock_key: str) -> timedelta:
        """Time until a held lock expires, judged from its acquisition stamp."""
        held_since = self.cache.read(lock_key)
        try:
            acquired = datetime.fromisoformat(held_since)
        except (TypeError, ValueError):
            return self.lock_ttl
        remaining = acquired + self.lock_ttl - self.clock.now()
        return max(remaining, timedelta(seconds=1))
