from dataclasses import dataclass
from datetime import date
from typing import Optional

from dates import add_months, local_today, month_end, month_start


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def resolve_month(month: Optional[str], *, today: Optional[date] = None) -> Period:
    """Resolve ``YYYY-MM`` (or this/next month) into a calendar month period."""
    today = today or local_today()
    if not month or month == "this_month":
        first = month_start(today)
        return Period("this_month", first, month_end(first))
    if month == "next_month":
        first = add_months(month_start(today), 1)
        return Period("next_month", first, month_end(first))
    try:
        year_str, month_str = month.split("-", 1)
        first = date(int(year_str), int(month_str), 1)
    except ValueError as exc:
        raise ValueError(f"Invalid month: {month!r} (expected YYYY-MM)") from exc
    return Period(first.strftime("%Y-%m"), first, month_end(first))


def resolve_year(year: Optional[str], *, today: Optional[date] = None) -> Period:
    today = today or local_today()
    if not year:
        value = today.year
    else:
        try:
            value = int(year)
        except ValueError as exc:
            raise ValueError(f"Invalid year: {year!r}") from exc
        if not 1970 <= value <= 3000:
            raise ValueError(f"Invalid year: {year!r}")
    return Period(str(value), date(value, 1, 1), date(value, 12, 31))
