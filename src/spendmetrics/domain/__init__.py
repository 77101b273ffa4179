"""Domain layer for spendmetrics application."""

# Services import the database layer, so they are resolved lazily to keep
# ``spendmetrics.domain.entities`` importable from there without a cycle.
_SERVICES = {
    "AccountService": "spendmetrics.domain.account",
    "ExpenseService": "spendmetrics.domain.expense",
    "MetricsCalculator": "spendmetrics.domain.metrics",
    "DebounceGate": "spendmetrics.domain.refresh",
    "MetricsRefreshJob": "spendmetrics.domain.refresh",
    "MetricsCalculationJob": "spendmetrics.domain.precalculation",
    "JobMetricsRecorder": "spendmetrics.domain.job_metrics",
    "MetricsJobMonitor": "spendmetrics.domain.monitor",
}

__all__ = list(_SERVICES)


def __getattr__(name):
    if name in _SERVICES:
        import importlib

        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
