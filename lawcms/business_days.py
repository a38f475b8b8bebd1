from __future__ import annotations

from datetime import date, datetime, timedelta

# Monday=0 ... Sunday=6
_WEEKEND = (5, 6)


def is_business_day(day: date) -> bool:
    return day.weekday() not in _WEEKEND


def add_business_days(start: datetime, days: int) -> datetime:
    """
    Return `start` moved forward by `days` business days (Saturday and Sunday skipped).

    The time of day is preserved. Holidays are not taken into account.
    """

    if days < 0:
        raise ValueError("days must be >= 0")

    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if is_business_day(current):
            remaining -= 1
    return current


def business_days_between(start: datetime, end: datetime) -> int:
    """Signed count of business days from `start` to `end` (negative when `end` is earlier)."""

    if end < start:
        return -business_days_between(end, start)

    count = 0
    current = start.date()
    target = end.date()
    while current < target:
        current += timedelta(days=1)
        if is_business_day(current):
            count += 1
    return count
