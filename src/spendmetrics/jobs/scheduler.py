"""Delayed job scheduling with retries.

Jobs are registered by name and scheduled with a delay and keyword payload.
A job that raises is retried with polynomial backoff until it has run
``max_attempts`` times; after that it is kept in ``failed`` for inspection.
"""

import itertools
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 3


def retry_delay(executions: int) -> timedelta:
    """Backoff before the next attempt after ``executions`` failed runs."""
    return timedelta(seconds=executions**4 + 2)


@dataclass
class ScheduledJob:
    """A job waiting to run (or that ran out of attempts)."""

    id: int
    job_name: str
    payload: dict[str, Any]
    run_at: datetime
    attempts: int = 0
    last_error: Optional[str] = field(default=None, compare=False)


class JobScheduler(ABC):
    """Schedules named jobs to run after a delay."""

    @abstractmethod
    def schedule(self, delay: timedelta | float, job_name: str, **payload: Any) -> ScheduledJob:
        """Schedule job_name to run with payload once delay has elapsed."""
        pass


class InProcessScheduler(JobScheduler):
    """Scheduler that runs due jobs in the calling thread."""

    def __init__(self, clock: Optional[Clock] = None, max_attempts: int = MAX_ATTEMPTS):
        self.clock = clock or Clock()
        self.max_attempts = max_attempts
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.failed: list[ScheduledJob] = []
        self._queue: list[ScheduledJob] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, job_name: str, handler: Callable[..., Any]) -> None:
        self.handlers[job_name] = handler

    def schedule(self, delay: timedelta | float, job_name: str, **payload: Any) -> ScheduledJob:
        if job_name not in self.handlers:
            raise ValueError(f"No handler registered for job '{job_name}'")
        if not isinstance(delay, timedelta):
            delay = timedelta(seconds=delay)
        job = ScheduledJob(
            id=next(self._ids),
            job_name=job_name,
            payload=dict(payload),
            run_at=self.clock.now() + delay,
        )
        with self._lock:
            self._queue.append(job)
        logger.debug("Scheduled %s #%s to run at %s", job_name, job.id, job.run_at.isoformat())
        return job

    def pending(self) -> list[ScheduledJob]:
        with self._lock:
            return sorted(self._queue, key=lambda job: (job.run_at, job.id))

    def next_run_at(self) -> Optional[datetime]:
        pending = self.pending()
        return pending[0].run_at if pending else None

    def run_due(self) -> int:
        """Run every job whose time has come. Returns how many ran."""
        now = self.clock.now()
        with self._lock:
            due = sorted(
                (job for job in self._queue if job.run_at <= now),
                key=lambda job: (job.run_at, job.id),
            )
            self._queue = [job for job in self._queue if job.run_at > now]

        for job in due:
            self._execute(job)
        return len(due)

    def run_until_idle(
        self,
        sleep: Callable[[float], Any] = time.sleep,
        max_rounds: int = 1000,
    ) -> int:
        """Run jobs, sleeping until each becomes due, until the queue is empty."""
        ran = 0
        for _ in range(max_rounds):
            run_at = self.next_run_at()
            if run_at is None:
                break
            wait = (run_at - self.clock.now()).total_seconds()
            if wait > 0:
                sleep(wait)
            ran += self.run_due()
        return ran

    def _execute(self, job: ScheduledJob) -> None:
        handler = self.handlers[job.job_name]
        job.attempts += 1
        try:
            handler(**job.payload)
        except Exception as exc:
            job.last_error = str(exc)
            if job.attempts < self.max_attempts:
                job.run_at = self.clock.now() + retry_delay(job.attempts)
                logger.warning(
                    "%s #%s failed (attempt %s/%s), retrying at %s: %s",
                    job.job_name,
                    job.id,
                    job.attempts,
                    self.max_attempts,
                    job.run_at.isoformat(),
                    exc,
                )
                with self._lock:
                    self._queue.append(job)
            else:
                logger.error(
                    "%s #%s failed after %s attempts: %s",
                    job.job_name,
                    job.id,
                    job.attempts,
                    exc,
                )
                self.failed.append(job)
