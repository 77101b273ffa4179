"""Health and performance views over background job telemetry."""

from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from spendmetrics.cache.base import CacheStore
from spendmetrics.domain import precalculation, refresh
from spendmetrics.domain.job_metrics import job_metrics_key, slow_jobs_key
from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import get_logger

logger = get_logger(__name__)

PERFORMANCE_TARGET_SECONDS = 30.0
CRITICAL_SUCCESS_RATE = 90.0
WARNING_SUCCESS_RATE = 95.0
MAX_SLOW_JOBS_BEFORE_WARNING = 10
STALE_LOCK_AGE = timedelta(minutes=10)

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"
IDLE = "idle"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def job_status(success_rate: float, average_time: float, executions: int) -> str:
    """Classify one job type from its aggregate numbers."""
    if executions == 0:
        return IDLE
    if success_rate < CRITICAL_SUCCESS_RATE:
        return CRITICAL
    if success_rate < WARNING_SUCCESS_RATE or average_time > PERFORMANCE_TARGET_SECONDS:
        return WARNING
    return HEALTHY


class MetricsJobMonitor:
    """Aggregate job telemetry across accounts and clean up after crashed jobs."""

    def __init__(
        self,
        cache: CacheStore,
        clock: Optional[Clock] = None,
        db=None,
        scheduler=None,
    ):
        """Initialize the monitor.

        Args:
            cache: Store holding telemetry, locks and debounce markers
            clock: Time source
            db: Record store listing the accounts for force_recalculate_all
            scheduler: Scheduler the forced recalculations are queued on
        """
        self.cache = cache
        self.clock = clock or Clock()
        self.db = db
        self.scheduler = scheduler

    def status(self) -> dict[str, Any]:
        """Everything the dashboard shows, in one dictionary."""
        calculation = self.calculation_job_status()
        refresh_status = self.refresh_job_status()
        return {
            "calculation_jobs": calculation,
            "refresh_jobs": refresh_status,
            "performance": self.performance_metrics(),
            "health": self.health_check(calculation, refresh_status),
            "slow_jobs": self.recent_slow_jobs(),
            "recommendations": self.recommendations(calculation, refresh_status),
        }

    def calculation_job_status(self) -> dict[str, Any]:
        status = self._aggregate(precalculation.JOB_TYPE)
        status["active_locks"] = len(self.cache.keys(precalculation.calculation_lock_key("")))
        return status

    def refresh_job_status(self) -> dict[str, Any]:
        status = self._aggregate(refresh.JOB_TYPE)
        status["active_locks"] = len(self.cache.keys(refresh.refresh_lock_key("")))
        status["debounced_count"] = len(self.cache.keys(refresh.debounce_marker_key("")))
        return status

    def performance_metrics(self) -> dict[str, Any]:
        total_runs = 0
        total_time = 0.0
        exceeding = 0
        for job_type in (precalculation.JOB_TYPE, refresh.JOB_TYPE):
            for metrics in self._telemetry(job_type):
                total_runs += metrics.get("success_count", 0)
                total_time += metrics.get("total_time", 0.0)
                exceeding += sum(
                    1
                    for execution in metrics.get("executions", [])
                    if execution.get("elapsed", 0.0) > PERFORMANCE_TARGET_SECONDS
                )
        return {
            "total_metric_calculations": total_runs,
            "average_execution_time": round(total_time / total_runs, 2) if total_runs else 0.0,
            "jobs_exceeding_target": exceeding,
            "target_seconds": PERFORMANCE_TARGET_SECONDS,
        }

    def health_check(
        self,
        calculation: Optional[dict[str, Any]] = None,
        refresh_status: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        calculation = calculation or self.calculation_job_status()
        refresh_status = refresh_status or self.refresh_job_status()
        slow_count = len(self.recent_slow_jobs(limit=None))

        checks = {
            "calculation_job_healthy": calculation["status"] in (HEALTHY, IDLE),
            "refresh_job_healthy": refresh_status["status"] in (HEALTHY, IDLE),
            "performance_acceptable": (
                calculation["average_execution_time"] <= PERFORMANCE_TARGET_SECONDS
                and refresh_status["average_execution_time"] <= PERFORMANCE_TARGET_SECONDS
            ),
            "few_slow_jobs": slow_count <= MAX_SLOW_JOBS_BEFORE_WARNING,
        }

        statuses = (calculation["status"], refresh_status["status"])
        if CRITICAL in statuses:
            status, message = CRITICAL, "High failure rate in metrics jobs"
        elif not checks["performance_acceptable"]:
            status, message = WARNING, "Jobs exceeding performance target"
        elif not checks["few_slow_jobs"]:
            status, message = WARNING, f"{slow_count} slow jobs recorded recently"
        elif WARNING in statuses:
            status, message = WARNING, "Elevated failure rate in metrics jobs"
        else:
            status, message = HEALTHY, "All metrics jobs are healthy"

        return {"status": status, "message": message, "checks": checks}

    def recent_slow_jobs(self, limit: Optional[int] = 10) -> list[dict[str, Any]]:
        """Newest slow runs first, with how far each overshot the target."""
        slow: list[dict[str, Any]] = []
        for job_type in (precalculation.JOB_TYPE, refresh.JOB_TYPE):
            for entry in self.cache.read(slow_jobs_key(job_type)) or []:
                slow.append(
                    {
                        **entry,
                        "job_type": job_type,
                        "exceeded_by": round(entry["elapsed_time"] - PERFORMANCE_TARGET_SECONDS, 2),
                    }
                )
        slow.sort(key=lambda entry: entry.get("timestamp", ""), reverse=True)
        return slow[:limit]

    def stale_locks(self) -> list[str]:
        """Lock keys whose acquisition time is older than the stale threshold."""
        cutoff = self.clock.now() - STALE_LOCK_AGE
        stale = []
        for prefix in (precalculation.calculation_lock_key(""), refresh.refresh_lock_key("")):
            for key in self.cache.keys(prefix):
                acquired_at = _parse_timestamp(self.cache.read(key))
                if acquired_at is None:
                    logger.warning("Lock %s holds no acquisition time, leaving it alone", key)
                    continue
                if acquired_at < cutoff:
                    stale.append(key)
        return stale

    def clear_stale_locks(self) -> int:
        """Delete stale locks left behind by crashed jobs. Returns how many."""
        cleared = 0
        for key in self.stale_locks():
            if self.cache.delete(key):
                cleared += 1
                logger.warning("Cleared stale lock %s", key)
        return cleared

    def force_recalculate_all(self) -> int:
        """Queue a forced pre-calculation for every account."""
        if self.db is None or self.scheduler is None:
            raise RuntimeError("Monitor has no database or scheduler configured")
        accounts = self.db.list_accounts()
        for account in accounts:
            self.scheduler.schedule(
                0, precalculation.JOB_TYPE, account_id=account.id, force_refresh=True
            )
        logger.info("Queued forced recalculation for %s accounts", len(accounts))
        return len(accounts)

    def recommendations(
        self,
        calculation: Optional[dict[str, Any]] = None,
        refresh_status: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, str]]:
        calculation = calculation or self.calculation_job_status()
        refresh_status = refresh_status or self.refresh_job_status()
        advice = []
        for name, status in (("calculation", calculation), ("refresh", refresh_status)):
            if status["average_execution_time"] > PERFORMANCE_TARGET_SECONDS:
                advice.append(
                    {
                        "type": "performance",
                        "message": (
                            f"Average {name} job time is {status['average_execution_time']:.1f}s; "
                            "consider narrowing the pre-calculated periods"
                        ),
                    }
                )
            if status["total_executions"] and status["success_rate"] < WARNING_SUCCESS_RATE:
                advice.append(
                    {
                        "type": "reliability",
                        "message": (
                            f"{name.capitalize()} job success rate is {status['success_rate']:.1f}%; "
                            "check the logs for recurring errors"
                        ),
                    }
                )
        stale = self.stale_locks()
        if stale:
            advice.append(
                {
                    "type": "maintenance",
                    "message": f"{len(stale)} stale locks found; run clear-locks",
                }
            )
        return advice

    def _telemetry(self, job_type: str) -> list[dict[str, Any]]:
        entries = []
        for key in self.cache.keys(job_metrics_key(job_type, "")):
            metrics = self.cache.read(key)
            if metrics is not None:
                entries.append(metrics)
        return entries

    def _aggregate(self, job_type: str) -> dict[str, Any]:
        successes = failures = 0
        total_time = 0.0
        last_execution: Optional[str] = None
        for metrics in self._telemetry(job_type):
            successes += metrics.get("success_count", 0)
            failures += metrics.get("failure_count", 0)
            total_time += metrics.get("total_time", 0.0)
            for execution in metrics.get("executions", []):
                timestamp = execution.get("timestamp")
                if timestamp and (last_execution is None or timestamp > last_execution):
                    last_execution = timestamp

        runs = successes + failures
        success_rate = round(successes / runs * 100, 2) if runs else 0.0
        average_time = round(total_time / successes, 2) if successes else 0.0
        return {
            "total_executions": runs,
            "success_count": successes,
            "failure_count": failures,
            "success_rate": success_rate,
            "average_execution_time": average_time,
            "last_execution": last_execution,
            "status": job_status(success_rate, average_time, runs),
        }
