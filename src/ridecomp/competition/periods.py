"""Date-range helpers shared by the competition engine and the dashboards.

Sums scalar contributions over an inclusive date range and resolves the
ranking windows (all time, last 30 days, this month, this year).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import TypeVar
from zoneinfo import ZoneInfo

from ridecomp.errors import InvalidInput

_T = TypeVar("_T")

RANKING_PERIODS = ("all_time", "last_30_days", "this_month", "this_year")


def today_in(tz_name: str, now: datetime | None = None) -> date:
    """Calendar date in the given zone. `now` defaults to the current UTC time."""
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(ZoneInfo(tz_name)).date()


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def in_range(day: date, start: date | None, end: date | None) -> bool:
    """Inclusive range check; a missing bound is open."""
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def sum_in_range(
    items: Iterable[_T],
    start: date | None,
    end: date | None,
    *,
    value: Callable[[_T], Decimal],
    day: Callable[[_T], date],
) -> Decimal:
    """Sum `value(item)` for every item whose `day(item)` falls in [start, end]."""
    total = Decimal("0")
    for item in items:
        if in_range(day(item), start, end):
            total += value(item)
    return total


def ranking_window(period: str, today: date) -> tuple[date, date] | None:
    """Resolve a ranking period to inclusive (start, end) bounds.

    Returns None for "all_time" (also accepted as "all"). Raises InvalidInput
    on an unknown period.
    """
    if period in ("all_time", "all"):
        return None
    if period == "last_30_days":
        return today - timedelta(days=30), today
    if period == "this_month":
        start = today.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    if period == "this_year":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    raise InvalidInput(f"Invalid period: {period}. Must be one of {', '.join(RANKING_PERIODS)}")
