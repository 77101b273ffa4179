"""Tests for the in-process job scheduler."""

from datetime import timedelta

import pytest

from spendmetrics.jobs.scheduler import InProcessScheduler, retry_delay


@pytest.fixture
def calls(scheduler):
    seen = []
    scheduler.register("record", lambda **payload: seen.append(payload))
    return seen


def test_schedule_unknown_job(scheduler):
    """Test that only registered jobs can be scheduled."""
    with pytest.raises(ValueError, match="No handler registered"):
        scheduler.schedule(0, "missing")


def test_run_due_only_runs_due_jobs(scheduler, clock, calls):
    """Test that jobs wait for their delay."""
    scheduler.schedule(5, "record", account_id=1)
    scheduler.schedule(timedelta(seconds=10), "record", account_id=2)

    assert scheduler.run_due() == 0
    clock.advance(5)
    assert scheduler.run_due() == 1
    assert calls == [{"account_id": 1}]
    assert scheduler.next_run_at() == clock.now() + timedelta(seconds=5)


def test_run_until_idle(scheduler, clock, calls):
    """Test draining the queue with an injected sleep."""
    scheduler.schedule(10, "record", account_id=2)
    scheduler.schedule(5, "record", account_id=1)

    assert scheduler.run_until_idle(sleep=clock.advance) == 2
    assert calls == [{"account_id": 1}, {"account_id": 2}]
    assert scheduler.pending() == []


def test_retry_delay():
    """Test polynomial backoff."""
    assert retry_delay(1) == timedelta(seconds=3)
    assert retry_delay(2) == timedelta(seconds=18)


def test_failing_job_is_retried_then_given_up(clock):
    """Test retries with backoff and the failed list."""
    scheduler = InProcessScheduler(clock=clock, max_attempts=3)
    attempts = []

    def flaky(**payload):
        attempts.append(clock.now())
        raise RuntimeError("still broken")

    scheduler.register("flaky", flaky)
    scheduler.schedule(0, "flaky", account_id=1)
    scheduler.run_until_idle(sleep=clock.advance)

    assert len(attempts) == 3
    assert attempts[1] - attempts[0] == timedelta(seconds=3)
    assert attempts[2] - attempts[1] == timedelta(seconds=18)
    assert scheduler.failed[0].last_error == "still broken"


def test_job_succeeding_on_retry(scheduler, clock):
    """Test that a job recovering on retry is not marked failed."""
    outcomes = [RuntimeError("first"), None]

    def recovering(**payload):
        outcome = outcomes.pop(0)
        if outcome is not None:
            raise outcome

    scheduler.register("recovering", recovering)
    scheduler.schedule(0, "recovering")

    assert scheduler.run_until_idle(sleep=clock.advance) == 2
    assert scheduler.failed == []
