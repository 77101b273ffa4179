"""Date parsing utilities."""

from datetime import date, timedelta
from typing import Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


def parse_date(date_str: str, today: Optional[date] = None) -> date:
    """Parse a date string into a date object.

    Supports absolute dates ("2024-01-15", "January 15, 2024") and a few
    relative forms: "today", "yesterday", "N days ago", and "this/last"
    followed by week, month or year (which resolve to the period's first day).

    Args:
        date_str: Date string
        today: Date that relative forms are resolved against

    Returns:
        Date object

    Raises:
        ValueError: If date string cannot be parsed
    """
    date_str = date_str.strip().lower()
    today = today or date.today()

    if date_str == "today":
        return today
    if date_str == "yesterday":
        return today - timedelta(days=1)

    if date_str.endswith(" days ago"):
        count = date_str[: -len(" days ago")].strip()
        if count.isdigit():
            return today - timedelta(days=int(count))

    for prefix, shift in (("this ", 0), ("last ", 1)):
        if not date_str.startswith(prefix):
            continue
        unit = date_str[len(prefix):]
        if unit == "week":
            return today - timedelta(days=today.weekday() + 7 * shift)
        if unit == "month":
            return (today - relativedelta(months=shift)).replace(day=1)
        if unit == "year":
            return today.replace(month=1, day=1) - relativedelta(years=shift)

    try:
        return date_parser.parse(date_str).date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{date_str}': {e}")
