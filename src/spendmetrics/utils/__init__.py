"""Utility functions for spendmetrics."""

from spendmetrics.utils.clock import Clock, FixedClock
from spendmetrics.utils.date_parser import parse_date
from spendmetrics.utils.amount_parser import parse_amount
from spendmetrics.utils.logging_setup import configure_logging, get_logger

__all__ = [
    "Clock",
    "FixedClock",
    "parse_date",
    "parse_amount",
    "configure_logging",
    "get_logger",
]
