"""Rolling execution telemetry for background jobs.

One cache entry per (job type, account) holds the last executions and the
running counters derived from them. Updates are read-modify-write against
that single entry; concurrent writers may overwrite each other, which the
monitoring views tolerate.
"""

from datetime import timedelta
from typing import Any, Optional

from spendmetrics.cache.base import CacheStore
from spendmetrics.utils.clock import Clock

MAX_EXECUTIONS = 100
METRICS_TTL = timedelta(hours=24)
MAX_SLOW_JOBS = 50
SLOW_JOBS_TTL = timedelta(days=7)

SUCCESS = "success"
FAILURE = "failure"


def job_metrics_key(job_type: str, account_id: int) -> str:
    return f"job_metrics:{job_type}:{account_id}"


def slow_jobs_key(job_type: str) -> str:
    return f"slow_jobs:{job_type}"


def empty_job_metrics() -> dict[str, Any]:
    return {
        "executions": [],
        "success_count": 0,
        "failure_count": 0,
        "total_time": 0.0,
        "average_time": 0.0,
        "success_rate": 0.0,
    }


class JobMetricsRecorder:
    """Record job outcomes into capped rolling logs."""

    def __init__(self, cache: CacheStore, clock: Optional[Clock] = None):
        self.cache = cache
        self.clock = clock or Clock()

    def get(self, job_type: str, account_id: int) -> dict[str, Any]:
        """Current telemetry for one job type and account (empty if none)."""
        return self.cache.read(job_metrics_key(job_type, account_id)) or empty_job_metrics()

    def record(
        self,
        job_type: str,
        account_id: int,
        elapsed: float,
        status: str,
        processed: int = 0,
    ) -> dict[str, Any]:
        """Append one execution and update the derived aggregates.

        Average time is taken over successful runs only; the success rate is
        a percentage of all recorded runs.
        """
        if status not in (SUCCESS, FAILURE):
            raise ValueError(f"Unknown job status: {status}")

        metrics = self.get(job_type, account_id)
        metrics["executions"].append(
            {
                "timestamp": self.clock.now().isoformat(),
                "elapsed": round(float(elapsed), 4),
                "processed": processed,
                "status": status,
            }
        )
        metrics["executions"] = metrics["executions"][-MAX_EXECUTIONS:]

        if status == SUCCESS:
            metrics["success_count"] += 1
            metrics["total_time"] += float(elapsed)
        else:
            metrics["failure_count"] += 1

        if metrics["success_count"] > 0:
            metrics["average_time"] = metrics["total_time"] / metrics["success_count"]

        runs = metrics["success_count"] + metrics["failure_count"]
        metrics["success_rate"] = round(metrics["success_count"] / runs * 100, 2) if runs else 0.0

        self.cache.write(job_metrics_key(job_type, account_id), metrics, ttl=METRICS_TTL)
        return metrics

    def record_slow_run(
        self, job_type: str, account_id: int, elapsed: float, expense_count: int
    ) -> list[dict[str, Any]]:
        """Remember a run that exceeded its time target."""
        key = slow_jobs_key(job_type)
        slow_jobs = self.cache.read(key) or []
        slow_jobs.append(
            {
                "account_id": account_id,
                "timestamp": self.clock.now().isoformat(),
                "elapsed_time": round(float(elapsed), 4),
                "expense_count": expense_count,
            }
        )
        slow_jobs = slow_jobs[-MAX_SLOW_JOBS:]
        self.cache.write(key, slow_jobs, ttl=SLOW_JOBS_TTL)
        return slow_jobs

    def slow_runs(self, job_type: str) -> list[dict[str, Any]]:
        return self.cache.read(slow_jobs_key(job_type)) or []
