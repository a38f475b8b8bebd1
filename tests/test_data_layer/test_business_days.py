"""Tests for business-day arithmetic used by FOIL due dates."""
from __future__ import annotations

from datetime import date, datetime

import pytest

from lawcms.business_days import add_business_days, business_days_between, is_business_day

# 2025-01-06 is a Monday.
MONDAY = datetime(2025, 1, 6, 9, 30)
FRIDAY = datetime(2025, 1, 10, 16, 0)
SATURDAY = datetime(2025, 1, 11, 12, 0)


def test_is_business_day():
    assert is_business_day(date(2025, 1, 6))
    assert not is_business_day(date(2025, 1, 11))
    assert not is_business_day(date(2025, 1, 12))


@pytest.mark.parametrize(
    "start,days,expected",
    [
        (MONDAY, 0, MONDAY),
        (MONDAY, 5, datetime(2025, 1, 13, 9, 30)),
        (MONDAY, 2, datetime(2025, 1, 8, 9, 30)),
        (FRIDAY, 1, datetime(2025, 1, 13, 16, 0)),
        (FRIDAY, 5, datetime(2025, 1, 17, 16, 0)),
        (SATURDAY, 1, datetime(2025, 1, 13, 12, 0)),
        (SATURDAY, 2, datetime(2025, 1, 14, 12, 0)),
    ],
)
def test_add_business_days_skips_weekends(start, days, expected):
    assert add_business_days(start, days) == expected


def test_add_business_days_never_lands_on_weekend():
    for offset in range(1, 15):
        assert is_business_day(add_business_days(FRIDAY, offset))


def test_negative_days_rejected():
    with pytest.raises(ValueError):
        add_business_days(MONDAY, -1)


def test_business_days_between():
    assert business_days_between(MONDAY, datetime(2025, 1, 13, 9, 30)) == 5
    assert business_days_between(FRIDAY, datetime(2025, 1, 13)) == 1
    assert business_days_between(datetime(2025, 1, 13), FRIDAY) == -1
    assert business_days_between(MONDAY, MONDAY) == 0
