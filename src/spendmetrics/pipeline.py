"""Wire the metrics services together from Settings."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from spendmetrics.cache.base import CacheStore
from spendmetrics.config import Settings
from spendmetrics.database.base import Database
from spendmetrics.domain import precalculation, refresh
from spendmetrics.domain.account import AccountService
from spendmetrics.domain.expense import ExpenseService
from spendmetrics.domain.job_metrics import JobMetricsRecorder
from spendmetrics.domain.monitor import MetricsJobMonitor
from spendmetrics.domain.precalculation import MetricsCalculationJob
from spendmetrics.domain.refresh import DebounceGate, MetricsRefreshJob
from spendmetrics.jobs.scheduler import InProcessScheduler
from spendmetrics.utils.clock import Clock


@dataclass
class MetricsPipeline:
    """Services sharing one database, cache, clock and scheduler."""

    db: Database
    cache: CacheStore
    clock: Clock
    settings: Settings
    scheduler: InProcessScheduler
    recorder: JobMetricsRecorder
    gate: DebounceGate
    refresh_job: MetricsRefreshJob
    calculation_job: MetricsCalculationJob
    monitor: MetricsJobMonitor
    accounts: AccountService
    expenses: ExpenseService

    @classmethod
    def build(
        cls,
        db: Database,
        cache: CacheStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> "MetricsPipeline":
        settings = settings or Settings()
        clock = clock or Clock()
        scheduler = InProcessScheduler(clock=clock)
        recorder = JobMetricsRecorder(cache, clock)
        lock_ttl = timedelta(seconds=settings.lock_ttl_seconds)

        gate = DebounceGate(
            cache,
            scheduler,
            clock=clock,
            window=timedelta(seconds=settings.debounce_seconds),
            dates_grace=lock_ttl,
        )
        refresh_job = MetricsRefreshJob(
            db,
            cache,
            recorder=recorder,
            gate=gate,
            clock=clock,
            lock_ttl=lock_ttl,
            snapshot_ttl=timedelta(seconds=settings.snapshot_ttl_seconds),
            recent_window_days=settings.recent_window_days,
        )
        calculation_job = MetricsCalculationJob(db, cache, recorder=recorder, clock=clock)

        scheduler.register(refresh.JOB_TYPE, refresh_job.perform)
        scheduler.register(precalculation.JOB_TYPE, calculation_job.perform)

        return cls(
            db=db,
            cache=cache,
            clock=clock,
            settings=settings,
            scheduler=scheduler,
            recorder=recorder,
            gate=gate,
            refresh_job=refresh_job,
            calculation_job=calculation_job,
            monitor=MetricsJobMonitor(cache, clock, db=db, scheduler=scheduler),
            accounts=AccountService(db),
            expenses=ExpenseService(db, gate=gate),
        )
