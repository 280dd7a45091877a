from datetime import date, datetime, timezone

import pytest

from dates import (
    add_days,
    add_months,
    days_in_month,
    local_noon,
    month_end,
    month_start,
    months_between,
    to_date,
)
from periods import resolve_month, resolve_year


def test_local_noon_pins_strings_to_noon_of_their_calendar_date():
    value = local_noon("2024-03-10T23:30:00Z")
    assert value.date() == date(2024, 3, 10)
    assert (value.hour, value.minute) == (12, 0)
    assert value.tzinfo is not None


def test_local_noon_converts_aware_datetimes_to_local_calendar_day():
    late_utc = datetime(2024, 3, 10, 23, 30, tzinfo=timezone.utc)
    assert to_date(late_utc) == date(2024, 3, 11)
    assert to_date(date(2024, 10, 27)) == date(2024, 10, 27)


def test_local_noon_rejects_empty_strings():
    with pytest.raises(ValueError):
        local_noon("   ")


def test_days_in_month():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert days_in_month(2024, 12) == 31
    assert days_in_month(2024, 4) == 30


def test_add_months_clamps_and_never_spills():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)


def test_add_months_returns_to_desired_day():
    assert add_months(date(2024, 2, 29), 1, day=31) == date(2024, 3, 31)
    assert add_months(date(2024, 2, 29), 1) == date(2024, 3, 29)


def test_day_and_month_helpers():
    assert add_days(date(2024, 2, 28), 1) == date(2024, 2, 29)
    assert add_days(date(2024, 3, 1), -1) == date(2024, 2, 29)
    assert month_start(date(2024, 2, 17)) == date(2024, 2, 1)
    assert month_end(date(2024, 2, 17)) == date(2024, 2, 29)
    assert months_between(date(2023, 11, 5), date(2024, 2, 1)) == 3


def test_resolve_month_variants():
    today = date(2024, 12, 15)
    this_month = resolve_month(None, today=today)
    assert (this_month.start, this_month.end) == (date(2024, 12, 1), date(2024, 12, 31))

    next_month = resolve_month("next_month", today=today)
    assert (next_month.start, next_month.end) == (date(2025, 1, 1), date(2025, 1, 31))

    february = resolve_month("2024-02", today=today)
    assert february.slug == "2024-02"
    assert february.end == date(2024, 2, 29)

    with pytest.raises(ValueError):
        resolve_month("2024-13", today=today)
    with pytest.raises(ValueError):
        resolve_month("February", today=today)


def test_resolve_year_bounds():
    assert resolve_year(None, today=date(2024, 5, 1)).start == date(2024, 1, 1)
    assert resolve_year("2025", today=date(2024, 5, 1)).end == date(2025, 12, 31)
    with pytest.raises(ValueError):
        resolve_year("1800", today=date(2024, 5, 1))
