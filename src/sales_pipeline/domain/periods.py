"""Calendar period helpers: month counting and current month/quarter/year ranges."""

from __future__ import annotations

import calendar
from datetime import date

from sales_pipeline.domain.records import to_date
from sales_pipeline.errors import InvalidArgument

PERIOD_MONTH = "M"
PERIOD_QUARTER = "Q"
PERIOD_YEAR = "Y"


def months_inclusive(start: date | str, end: date | str) -> int:
    """Number of calendar months touched by ``[start, end]``, never less than 1.

    Day-of-month is ignored: Jan 31 .. Feb 1 spans two months, Feb 1 .. Feb 1
    spans one.
    """
    s = to_date(start, "start")
    e = to_date(end, "end")
    months = (e.year - s.year) * 12 + (e.month - s.month) + 1
    return max(months, 1)


def month_end(d: date) -> date:
    return date(d.year, d.month, calendar.monthrange(d.year, d.month)[1])


def period_range(period: str, today: date | str) -> tuple[date, date]:
    """Inclusive (start, end) for the current month, quarter, or year."""
    d = to_date(today, "today")
    if period == PERIOD_MONTH:
        return date(d.year, d.month, 1), month_end(d)
    if period == PERIOD_QUARTER:
        first_month = 3 * ((d.month - 1) // 3) + 1
        return date(d.year, first_month, 1), month_end(date(d.year, first_month + 2, 1))
    if period == PERIOD_YEAR:
        return date(d.year, 1, 1), date(d.year, 12, 31)
    raise InvalidArgument(f"Unknown period {period!r}; expected one of M, Q, Y")
