"""Tests for the metrics refresh job."""

import logging
from datetime import date, timedelta
from decimal import Decimal

import pytest

from spendmetrics.domain.entities import CalculationResult, Period
from spendmetrics.domain.errors import CalculationError, NotFoundError, ValidationError
from spendmetrics.domain.job_metrics import job_metrics_key
from spendmetrics.domain.metrics import MetricsCalculator, snapshot_cache_key
from spendmetrics.domain.refresh import (
    MetricsRefreshJob,
    determine_affected_periods,
    refresh_lock_key,
)

TODAY = date(2024, 6, 20)


class BrokenCalculator(MetricsCalculator):
    def calculate(self):
        raise RuntimeError("cache unavailable")


class FailingComputeCalculator(MetricsCalculator):
    def compute(self):
        return CalculationResult(error=CalculationError("boom"))


def test_old_date_marks_only_its_own_buckets():
    """Test that a date outside the recent window leaves today's buckets alone."""
    pairs = determine_affected_periods([date(2024, 3, 10)], TODAY)

    assert pairs == [
        (Period.DAY, date(2024, 3, 10)),
        (Period.WEEK, date(2024, 3, 4)),
        (Period.MONTH, date(2024, 3, 1)),
        (Period.YEAR, date(2024, 1, 1)),
    ]


def test_recent_date_also_marks_current_buckets():
    """Test that a date within seven days also refreshes today's buckets."""
    pairs = determine_affected_periods([date(2024, 6, 18)], TODAY)

    assert pairs == [
        (Period.DAY, date(2024, 6, 18)),
        (Period.DAY, date(2024, 6, 20)),
        (Period.WEEK, date(2024, 6, 17)),
        (Period.MONTH, date(2024, 6, 1)),
        (Period.YEAR, date(2024, 1, 1)),
    ]


def test_recent_window_boundary():
    """Test that exactly seven days ago is still recent."""
    recent = determine_affected_periods([date(2024, 6, 13)], TODAY)
    old = determine_affected_periods([date(2024, 6, 12)], TODAY)

    assert (Period.DAY, TODAY) in recent
    assert (Period.DAY, TODAY) not in old


def test_no_dates_refreshes_current_buckets():
    """Test the fallback when nothing specific changed."""
    assert determine_affected_periods([], TODAY) == [
        (Period.DAY, date(2024, 6, 20)),
        (Period.WEEK, date(2024, 6, 17)),
        (Period.MONTH, date(2024, 6, 1)),
        (Period.YEAR, date(2024, 1, 1)),
    ]


def test_pairs_are_deduplicated():
    """Test that dates in the same week and month share buckets."""
    pairs = determine_affected_periods([date(2024, 3, 5), date(2024, 3, 6)], TODAY)

    assert pairs.count((Period.MONTH, date(2024, 3, 1))) == 1
    assert pairs.count((Period.WEEK, date(2024, 3, 4))) == 1
    assert len(pairs) == 5


def test_refresh_replaces_stale_snapshot(temp_db, cache, clock, june_expenses, add_expense):
    """Test that a refresh recomputes the cached snapshot of an affected period."""
    calculator = MetricsCalculator(
        temp_db, cache, june_expenses, period="month", reference_date=date(2024, 6, 15), clock=clock
    )
    assert calculator.calculate()["metrics"]["total_amount"] == 150.0

    add_expense(june_expenses.id, "30.00", "2024-06-19")
    result = MetricsRefreshJob(temp_db, cache, clock=clock).perform(
        june_expenses.id, [date(2024, 6, 19)]
    )

    assert result.skipped is False
    assert result.errors == ()
    assert cache.read(calculator.cache_key)["metrics"]["total_amount"] == 180.0
    day_key = snapshot_cache_key(june_expenses.id, Period.DAY, date(2024, 6, 19))
    assert cache.read(day_key)["metrics"]["total_amount"] == 30.0


def test_refresh_releases_lock_and_records_success(temp_db, cache, clock, june_expenses):
    """Test lock release and telemetry after a successful run."""
    result = MetricsRefreshJob(temp_db, cache, clock=clock).perform(
        june_expenses.id, ["2024-03-10"]
    )

    assert len(result.pairs) == 4
    assert cache.read(refresh_lock_key(june_expenses.id)) is None
    telemetry = cache.read(job_metrics_key("metrics_refresh", june_expenses.id))
    assert telemetry["success_count"] == 1
    assert telemetry["executions"][0]["processed"] == 4


def test_refresh_skips_when_lock_is_held(pipeline, cache, june_expenses):
    """Test that a concurrent run is skipped and pending dates stay queued."""
    pipeline.gate.trigger(june_expenses.id, date(2024, 6, 15))
    cache.write_if_absent(refresh_lock_key(june_expenses.id), "held elsewhere", ttl=60)

    result = pipeline.refresh_job.perform(june_expenses.id)

    assert result.skipped is True
    assert cache.read(refresh_lock_key(june_expenses.id)) == "held elsewhere"
    assert pipeline.gate.pending_dates(june_expenses.id) == [date(2024, 6, 15)]
    assert cache.read(job_metrics_key("metrics_refresh", june_expenses.id)) is None


def test_refresh_releases_lock_on_failure(temp_db, cache, clock, june_expenses):
    """Test that the lock is released and a failure recorded when a run raises."""
    job = MetricsRefreshJob(temp_db, cache, clock=clock, calculator_class=BrokenCalculator)

    with pytest.raises(RuntimeError, match="cache unavailable"):
        job.perform(june_expenses.id, [date(2024, 6, 15)])

    assert cache.read(refresh_lock_key(june_expenses.id)) is None
    telemetry = cache.read(job_metrics_key("metrics_refresh", june_expenses.id))
    assert telemetry["failure_count"] == 1
    assert telemetry["success_count"] == 0


def test_degraded_snapshots_are_reported_not_raised(temp_db, cache, clock, june_expenses):
    """Test that per-period calculation errors are collected."""
    job = MetricsRefreshJob(
        temp_db, cache, clock=clock, calculator_class=FailingComputeCalculator
    )

    result = job.perform(june_expenses.id, [date(2024, 3, 10)])

    assert len(result.errors) == 4
    assert result.errors[0] == "day:2024-03-10: boom"
    assert cache.keys("metrics_calculator:") == []


def test_refresh_rejects_unknown_account(temp_db, cache, clock):
    """Test that a missing account raises NotFoundError."""
    with pytest.raises(NotFoundError):
        MetricsRefreshJob(temp_db, cache, clock=clock).perform(999, [date(2024, 6, 15)])


def test_refresh_rejects_missing_date(temp_db, cache, clock, sample_account):
    """Test that a None date is refused before the lock is taken."""
    with pytest.raises(ValidationError):
        MetricsRefreshJob(temp_db, cache, clock=clock).perform(sample_account.id, [None])

    assert cache.read(refresh_lock_key(sample_account.id)) is None


def test_slow_refresh_logs_warning(temp_db, cache, clock, june_expenses, caplog):
    """Test the warning for runs over the 30 second target."""

    class SlowCalculator(MetricsCalculator):
        def calculate(self):
            clock.advance(10)
            return super().calculate()

    caplog.set_level(logging.INFO, logger="spendmetrics")
    job = MetricsRefreshJob(temp_db, cache, clock=clock, calculator_class=SlowCalculator)

    job.perform(june_expenses.id, [date(2024, 3, 10)])

    assert "MetricsRefreshJob exceeded 30s target" in caplog.text


def test_debounced_triggers_end_to_end(pipeline, clock, june_expenses, add_expense):
    """Test a burst of expense changes producing one refresh of all their periods."""
    stale = MetricsCalculator(
        pipeline.db, pipeline.cache, june_expenses, period="month", clock=clock
    ).calculate()
    assert stale["metrics"]["total_amount"] == 150.0

    pipeline.expenses.add_expense(june_expenses.id, Decimal("5.00"), date(2024, 6, 19))
    pipeline.expenses.add_expense(june_expenses.id, Decimal("7.00"), date(2024, 4, 2))

    assert len(pipeline.scheduler.pending()) == 1
    assert pipeline.scheduler.run_until_idle(sleep=clock.advance) == 1

    cache = pipeline.cache
    june = cache.read(snapshot_cache_key(june_expenses.id, Period.MONTH, date(2024, 6, 1)))
    april = cache.read(snapshot_cache_key(june_expenses.id, Period.MONTH, date(2024, 4, 1)))
    assert june["metrics"]["total_amount"] == 155.0
    assert april["metrics"]["total_amount"] == 7.0
    assert pipeline.gate.pending_dates(june_expenses.id) == []
    assert pipeline.recorder.get("metrics_refresh", june_expenses.id)["success_count"] == 1


def test_scheduler_retries_failed_refresh(temp_db, cache, clock, scheduler, june_expenses):
    """Test that a failing refresh is retried and finally given up."""
    job = MetricsRefreshJob(temp_db, cache, clock=clock, calculator_class=BrokenCalculator)
    scheduler.register("metrics_refresh", job.perform)
    scheduler.schedule(5, "metrics_refresh", account_id=june_expenses.id)

    scheduler.run_until_idle(sleep=clock.advance)

    assert len(scheduler.failed) == 1
    assert scheduler.failed[0].attempts == 3
    assert cache.read(refresh_lock_key(june_expenses.id)) is None
    assert job.recorder.get("metrics_refresh", june_expenses.id)["failure_count"] == 3


def test_retry_refreshes_dates_of_failed_run(pipeline, clock, june_expenses):
    """Test that a retried refresh still covers the dates the failed run took."""
    march = MetricsCalculator(
        pipeline.db, pipeline.cache, june_expenses, period="month",
        reference_date=date(2024, 3, 10), clock=clock,
    )
    assert march.calculate()["metrics"]["total_amount"] == 0.0
    failures = []

    class FailingOnceCalculator(MetricsCalculator):
        def calculate(self):
            if not failures:
                failures.append(self.cache_key)
                raise RuntimeError("transient cache error")
            return super().calculate()

    pipeline.refresh_job.calculator_class = FailingOnceCalculator
    pipeline.expenses.add_expense(june_expenses.id, Decimal("7.00"), date(2024, 3, 10))

    assert pipeline.scheduler.run_until_idle(sleep=clock.advance) == 2

    assert len(failures) == 1
    assert pipeline.scheduler.failed == []
    assert pipeline.cache.read(march.cache_key)["metrics"]["total_amount"] == 7.0
    assert pipeline.gate.pending_dates(june_expenses.id) == []
    telemetry = pipeline.recorder.get("metrics_refresh", june_expenses.id)
    assert telemetry["failure_count"] == 1
    assert telemetry["success_count"] == 1


def test_skipped_run_defers_pending_dates(pipeline, cache, clock, june_expenses):
    """Test that dates left by a run skipped on the lock get a follow-up run."""
    march = MetricsCalculator(
        pipeline.db, cache, june_expenses, period="month",
        reference_date=date(2024, 3, 10), clock=clock,
    )
    assert march.calculate()["metrics"]["total_amount"] == 0.0
    lock_key = refresh_lock_key(june_expenses.id)
    cache.write_if_absent(lock_key, clock.now().isoformat(), ttl=60)

    pipeline.expenses.add_expense(june_expenses.id, Decimal("7.00"), date(2024, 3, 10))
    clock.advance(5)
    assert pipeline.scheduler.run_due() == 1

    follow_up = pipeline.scheduler.pending()
    assert len(follow_up) == 1
    assert follow_up[0].run_at == clock.now() + timedelta(seconds=55)
    assert pipeline.gate.pending_dates(june_expenses.id) == [date(2024, 3, 10)]

    assert pipeline.scheduler.run_until_idle(sleep=clock.advance) == 1

    assert cache.read(lock_key) is None
    assert cache.read(march.cache_key)["metrics"]["total_amount"] == 7.0
    assert pipeline.gate.pending_dates(june_expenses.id) == []
