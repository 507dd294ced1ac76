from dataclasses import dataclass
from datetime import date
from typing import Optional

from billing import days_in_month


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_period(month: int, year: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    start = date(year, month, 1)
    end = date(year, month, days_in_month(year, month))
    return Period(f"{year:04d}-{month:02d}", start, end)


def resolve_month(
    month: Optional[str],
    year: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    """Month view requested by a caller, defaulting to the current month."""
    today = today or date.today()
    try:
        month_value = int(month) if month else today.month
        year_value = int(year) if year else today.year
    except ValueError as exc:
        raise ValueError("Month and year must be integers") from exc
    return month_period(month_value, year_value)
