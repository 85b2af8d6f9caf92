from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def current_month(*, today: Optional[date] = None) -> Period:
    today = today or date.today()
    return Period("this_month", month_start(today), month_end(today))


def trailing_months(months: int = 12, *, today: Optional[date] = None) -> Period:
    """The current month plus the ``months - 1`` calendar months before it."""
    if months < 1:
        raise ValueError("months must be at least 1")
    today = today or date.today()
    start = add_months(month_start(today), -(months - 1))
    return Period(f"last_{months}_months", start, month_end(today))
