"""Background job scheduling."""

from spendmetrics.jobs.scheduler import InProcessScheduler, JobScheduler, ScheduledJob

__all__ = ["InProcessScheduler", "JobScheduler", "ScheduledJob"]
