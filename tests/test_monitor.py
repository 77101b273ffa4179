"""Tests for the job monitor."""

from datetime import date, timedelta

import pytest

from spendmetrics.domain.job_metrics import job_metrics_key, slow_jobs_key
from spendmetrics.domain.monitor import MetricsJobMonitor


@pytest.fixture
def monitor(cache, clock, temp_db, scheduler):
    return MetricsJobMonitor(cache, clock, db=temp_db, scheduler=scheduler)


def _telemetry(cache, job_type, account_id, success, failure, total_time, executions=()):
    cache.write(
        job_metrics_key(job_type, account_id),
        {
            "success_count": success,
            "failure_count": failure,
            "total_time": total_time,
            "executions": list(executions),
        },
    )


def test_status_has_all_sections(monitor):
    """Test the combined status view."""
    status = monitor.status()

    assert set(status) == {
        "calculation_jobs",
        "refresh_jobs",
        "performance",
        "health",
        "slow_jobs",
        "recommendations",
    }
    assert status["calculation_jobs"]["status"] == "idle"
    assert status["health"]["status"] == "healthy"


def test_calculation_status_aggregates_accounts(monitor, cache):
    """Test aggregation of telemetry across accounts."""
    _telemetry(
        cache,
        "metrics_calculation",
        1,
        10,
        1,
        150.0,
        [{"timestamp": "2024-06-20T11:00:00+00:00", "elapsed": 15.0, "status": "success"}],
    )
    _telemetry(cache, "metrics_calculation", 2, 5, 0, 75.0)

    status = monitor.calculation_job_status()

    assert status["total_executions"] == 16
    assert status["success_rate"] == 93.75
    assert status["average_execution_time"] == 15.0
    assert status["last_execution"] == "2024-06-20T11:00:00+00:00"
    assert status["status"] == "warning"


def test_ninety_percent_success_is_a_warning(monitor, cache):
    """Test the boundary between warning and critical."""
    _telemetry(cache, "metrics_calculation", 1, 18, 2, 100.0)

    assert monitor.calculation_job_status()["status"] == "warning"


def test_refresh_status_counts_debounced_accounts(pipeline, june_expenses):
    """Test that pending debounce windows are reported."""
    pipeline.gate.trigger(june_expenses.id, date(2024, 6, 15))

    status = pipeline.monitor.refresh_job_status()

    assert status["debounced_count"] == 1
    assert status["active_locks"] == 0


def test_performance_metrics(monitor, cache):
    """Test totals across both job types."""
    _telemetry(
        cache,
        "metrics_calculation",
        1,
        10,
        0,
        200.0,
        [
            {"timestamp": "2024-06-20T11:30:00+00:00", "elapsed": 20.0, "status": "success"},
            {"timestamp": "2024-06-20T11:00:00+00:00", "elapsed": 35.0, "status": "success"},
        ],
    )
    _telemetry(cache, "metrics_refresh", 1, 5, 0, 50.0)

    metrics = monitor.performance_metrics()

    assert metrics["total_metric_calculations"] == 15
    assert metrics["average_execution_time"] == 16.67
    assert metrics["jobs_exceeding_target"] == 1


def test_health_check_healthy(monitor, cache):
    """Test healthy metrics."""
    _telemetry(cache, "metrics_calculation", 1, 100, 2, 1500.0)
    _telemetry(cache, "metrics_refresh", 1, 50, 1, 600.0)

    health = monitor.health_check()

    assert health["status"] == "healthy"
    assert health["checks"]["calculation_job_healthy"] is True


def test_health_check_critical_on_high_failure_rate(monitor, cache):
    """Test critical status when more than 10% of runs fail."""
    _telemetry(cache, "metrics_calculation", 1, 80, 25, 1500.0)

    health = monitor.health_check()

    assert health["status"] == "critical"
    assert "High failure rate" in health["message"]


def test_health_check_warning_on_slow_average(monitor, cache):
    """Test warning status when jobs are slow on average."""
    _telemetry(cache, "metrics_calculation", 1, 10, 0, 350.0)
    _telemetry(cache, "metrics_refresh", 1, 20, 0, 200.0)

    health = monitor.health_check()

    assert health["status"] == "warning"
    assert "exceeding performance target" in health["message"]


def test_health_check_warning_on_many_slow_jobs(monitor, cache):
    """Test warning status when many slow runs were logged."""
    cache.write(
        slow_jobs_key("metrics_calculation"),
        [
            {
                "account_id": 1,
                "timestamp": f"2024-06-20T10:{minute:02d}:00+00:00",
                "elapsed_time": 31.0,
                "expense_count": 10,
            }
            for minute in range(11)
        ],
    )

    assert monitor.health_check()["status"] == "warning"


def test_recent_slow_jobs(monitor, cache):
    """Test the slow job list and its overshoot."""
    cache.write(
        slow_jobs_key("metrics_calculation"),
        [
            {
                "account_id": 1,
                "timestamp": "2024-06-20T11:00:00+00:00",
                "elapsed_time": 45.0,
                "expense_count": 5000,
            }
        ],
    )

    slow = monitor.recent_slow_jobs()

    assert slow[0]["elapsed_time"] == 45.0
    assert slow[0]["exceeded_by"] == 15.0
    assert slow[0]["job_type"] == "metrics_calculation"


def test_clear_stale_locks(monitor, cache, clock):
    """Test that only locks older than ten minutes are cleared."""
    cache.write("metrics_calculation:1", (clock.now() - timedelta(minutes=15)).isoformat())
    cache.write("metrics_refresh:2", (clock.now() - timedelta(minutes=5)).isoformat())

    assert monitor.clear_stale_locks() == 1
    assert cache.read("metrics_calculation:1") is None
    assert cache.read("metrics_refresh:2") is not None


def test_recommendations(monitor, cache, clock):
    """Test performance, reliability and maintenance advice."""
    _telemetry(cache, "metrics_calculation", 1, 90, 15, 3500.0)
    cache.write("metrics_calculation:1", (clock.now() - timedelta(minutes=15)).isoformat())

    types = {advice["type"] for advice in monitor.recommendations()}

    assert types == {"performance", "reliability", "maintenance"}


def test_force_recalculate_all(monitor, scheduler, sample_account):
    """Test that a forced calculation is queued per account."""
    queued = []
    scheduler.register("metrics_calculation", lambda **payload: queued.append(payload))

    assert monitor.force_recalculate_all() == 1
    scheduler.run_due()
    assert queued == [{"account_id": sample_account.id, "force_refresh": True}]
