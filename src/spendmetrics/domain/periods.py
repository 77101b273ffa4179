"""Period boundary helpers.

A period instance is identified by its bucket date (the first day of the
period). Weeks run Monday to Sunday. The previous period is found by shifting
the reference date back one calendar unit, so a month always steps to the
previous calendar month regardless of how many days either month has.
"""

from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from spendmetrics.domain.entities import DateRange, Period


_ONE_UNIT = {
    Period.DAY: relativedelta(days=1),
    Period.WEEK: relativedelta(weeks=1),
    Period.MONTH: relativedelta(months=1),
    Period.YEAR: relativedelta(years=1),
}


def to_date(value: date | datetime | str) -> date:
    """Normalize a date, datetime or ISO date string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def period_start(period: Period, reference_date: date) -> date:
    """Return the bucket date of the period containing reference_date."""
    if period is Period.DAY:
        return reference_date
    if period is Period.WEEK:
        return reference_date - timedelta(days=reference_date.weekday())
    if period is Period.MONTH:
        return reference_date.replace(day=1)
    return reference_date.replace(month=1, day=1)


def period_range(period: Period, reference_date: date) -> DateRange:
    """Return the inclusive date range of the period containing reference_date."""
    start = period_start(period, reference_date)
    if period is Period.DAY:
        end = start
    elif period is Period.WEEK:
        end = start + timedelta(days=6)
    elif period is Period.MONTH:
        end = start + relativedelta(months=1) - timedelta(days=1)
    else:
        end = start.replace(month=12, day=31)
    return DateRange(start=start, end=end)


def previous_reference_date(period: Period, reference_date: date) -> date:
    """Shift reference_date back by exactly one unit of period."""
    return reference_date - _ONE_UNIT[period]


def previous_period_range(period: Period, reference_date: date) -> DateRange:
    """Return the range of the period immediately before the one containing reference_date."""
    return period_range(period, previous_reference_date(period, reference_date))
