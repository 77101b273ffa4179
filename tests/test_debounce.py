"""Tests for the refresh debounce gate."""

import threading
from datetime import date, timedelta

import pytest

from spendmetrics.domain.errors import ValidationError
from spendmetrics.domain.refresh import (
    DebounceGate,
    DebounceState,
    debounce_marker_key,
    pending_dates_key,
)


@pytest.fixture
def runs(scheduler):
    """Record refresh job invocations instead of running a real job."""
    calls = []
    scheduler.register("metrics_refresh", lambda account_id: calls.append(account_id))
    return calls


@pytest.fixture
def gate(cache, scheduler, clock, runs):
    return DebounceGate(cache, scheduler, clock=clock)


def test_first_trigger_schedules_job_after_window(gate, scheduler, clock):
    """Test that a trigger schedules one job at the end of the window."""
    job = gate.trigger(1, date(2024, 6, 15))

    assert job is not None
    assert job.payload == {"account_id": 1}
    assert job.run_at == clock.now() + timedelta(seconds=5)
    assert gate.state(1) is DebounceState.PENDING


def test_triggers_within_window_coalesce(gate, scheduler, clock, runs):
    """Test that N triggers in one window yield exactly one job."""
    for offset in range(10):
        gate.trigger(1, date(2024, 6, 1) + timedelta(days=offset))
        clock.advance(0.4)

    assert len(scheduler.pending()) == 1
    assert len(gate.pending_dates(1)) == 10

    scheduler.run_until_idle(sleep=clock.advance)
    assert runs == [1]


def test_duplicate_dates_are_stored_once(gate):
    """Test that the pending dates form a set."""
    gate.trigger(1, "2024-06-15")
    gate.trigger(1, date(2024, 6, 15))

    assert gate.pending_dates(1) == [date(2024, 6, 15)]


def test_window_expiry_returns_to_idle(gate, scheduler, clock):
    """Test that a new window opens once the previous one has elapsed."""
    gate.trigger(1, date(2024, 6, 15))
    clock.advance(5)

    assert gate.state(1) is DebounceState.IDLE
    assert gate.trigger(1, date(2024, 6, 16)) is not None
    assert len(scheduler.pending()) == 2


def test_accounts_are_debounced_independently(gate, scheduler):
    """Test that one account's window does not affect another."""
    assert gate.trigger(1, date(2024, 6, 15)) is not None
    assert gate.trigger(2, date(2024, 6, 15)) is not None
    assert gate.trigger(1, date(2024, 6, 16)) is None

    assert sorted(job.payload["account_id"] for job in scheduler.pending()) == [1, 2]


def test_pending_dates_outlive_the_window(gate, cache, clock):
    """Test that dates are still there when the job starts after the window."""
    gate.trigger(1, date(2024, 6, 15))
    clock.advance(5)

    assert cache.read(debounce_marker_key(1)) is None
    assert cache.read(pending_dates_key(1)) == ["2024-06-15"]


def test_drain_takes_and_clears_dates(gate):
    """Test draining the pending dates."""
    gate.trigger(1, date(2024, 6, 16))
    gate.trigger(1, date(2024, 6, 15))

    assert gate.drain(1) == [date(2024, 6, 15), date(2024, 6, 16)]
    assert gate.drain(1) == []


def test_missing_date_is_rejected(gate, scheduler):
    """Test that a trigger without a date raises and schedules nothing."""
    with pytest.raises(ValidationError, match="Affected date is required"):
        gate.trigger(1, None)
    with pytest.raises(ValidationError):
        gate.trigger(1, "15/06/2024")

    assert scheduler.pending() == []
    assert gate.state(1) is DebounceState.IDLE


def test_concurrent_triggers_schedule_one_job(gate, scheduler):
    """Test coalescing when triggers race from many threads."""
    barrier = threading.Barrier(20)

    def fire(offset):
        barrier.wait()
        gate.trigger(1, date(2024, 6, 1) + timedelta(days=offset))

    threads = [threading.Thread(target=fire, args=(offset,)) for offset in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(scheduler.pending()) == 1
    assert len(gate.pending_dates(1)) == 20


def test_requeue_restores_drained_dates(gate):
    """Test putting drained dates back for a later run."""
    gate.trigger(1, date(2024, 6, 15))
    drained = gate.drain(1)

    gate.requeue(1, drained)

    assert gate.pending_dates(1) == [date(2024, 6, 15)]


def test_defer_schedules_follow_up_only_for_pending_dates(gate, scheduler, clock):
    """Test deferral after the window has closed."""
    gate.trigger(1, date(2024, 6, 15))
    clock.advance(5)

    job = gate.defer(1, timedelta(seconds=30))

    assert job is not None
    assert job.run_at == clock.now() + timedelta(seconds=30)
    assert gate.state(1) is DebounceState.PENDING
    assert gate.defer(1, timedelta(seconds=30)) is None
    assert gate.defer(2, timedelta(seconds=30)) is None
    assert len(scheduler.pending()) == 2
