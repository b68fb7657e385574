"""Month grid construction.

Weeks start on Monday. A month is rendered as 4 to 6 rows of 7 consecutive
days; days that belong to the neighbouring months pad the first and last
rows and are flagged by the caller via ``in_month``.

Everything here is pure: no I/O, no clock access except where a ``today``
argument is defaulted.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Tuple

from dateutil.relativedelta import relativedelta

from .utils import MONTHS_EN, day_key

WEEK_LABELS: Tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Month is the only implemented view; the others are placeholders in the UI.
VIEWS: Tuple[str, ...] = ("Month", "Week", "Day")
ENABLED_VIEWS = frozenset({"Month"})

MAX_WEEK_ROWS = 6

WeekRow = List[date]


def _as_date(d: date | datetime) -> date:
    # datetime is a subclass of date; strip the time-of-day component
    if isinstance(d, datetime):
        return d.date()
    return d


def view_enabled(name: str) -> bool:
    return name in ENABLED_VIEWS


def first_of_month(d: date | datetime) -> date:
    return date(d.year, d.month, 1)


def last_of_month(d: date | datetime) -> date:
    return first_of_month(d) + relativedelta(months=1, days=-1)


def start_of_week(d: date | datetime) -> date:
    """Monday on or before ``d``, time of day dropped."""
    d = _as_date(d)
    return d - timedelta(days=d.weekday())


def end_of_week(d: date | datetime) -> datetime:
    """Last instant (Sunday 23:59:59.999999) of the week containing ``d``."""
    sunday = start_of_week(d) + timedelta(days=6)
    return datetime.combine(sunday, time.max)


def build_weeks(anchor: date | datetime) -> List[WeekRow]:
    """Return the Monday-start week rows covering the anchor's month.

    Only year and month of ``anchor`` matter. Rows stop as soon as the week
    holding the month's last day has been emitted, so there is never an
    all-padding trailing row.
    """
    start = start_of_week(first_of_month(anchor))
    week_end = end_of_week(last_of_month(anchor))
    weeks: List[WeekRow] = []
    cursor = start
    for _ in range(MAX_WEEK_ROWS):
        row = [cursor + timedelta(days=i) for i in range(7)]
        weeks.append(row)
        cursor = cursor + timedelta(days=7)
        if datetime.combine(cursor, time.min) > week_end:
            break
    return weeks


def keys_of_month(anchor: date | datetime) -> List[str]:
    """Every day key of the anchor's month, in order."""
    first = first_of_month(anchor)
    last = last_of_month(anchor)
    return [day_key(first + timedelta(days=i)) for i in range((last - first).days + 1)]


def month_bounds(anchor: date | datetime) -> Tuple[str, str]:
    """Inclusive (first, last) day keys of the anchor's month."""
    return day_key(first_of_month(anchor)), day_key(last_of_month(anchor))


def shift_month(anchor: date | datetime, delta: int) -> date:
    """First day of the month ``delta`` months away from the anchor's month."""
    return first_of_month(anchor) + relativedelta(months=delta)


def same_date(a: date | datetime, b: date | datetime) -> bool:
    return (a.year, a.month, a.day) == (b.year, b.month, b.day)


def in_month(d: date | datetime, anchor: date | datetime) -> bool:
    return d.year == anchor.year and d.month == anchor.month


def month_label(anchor: date | datetime) -> str:
    # strftime("%B") follows the process locale; labels stay English
    return f"{MONTHS_EN[anchor.month - 1]} {anchor.year}"
