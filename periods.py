from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Iterable


@dataclass(frozen=True)
class Period:
    year: int
    month: int
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_period(year: int, month: int) -> Period:
    last_day = monthrange(year, month)[1]
    return Period(year, month, date(year, month, 1), date(year, month, last_day))


def parse_year_month(year: str, month: str) -> tuple[int, int]:
    """Validate path-style year/month strings; raises ValueError when invalid."""
    try:
        year_value = int(year)
        month_value = int(month)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid year or month") from exc
    if not 1 <= year_value <= 9999 or not 1 <= month_value <= 12:
        raise ValueError("Invalid year or month")
    return year_value, month_value


def months_for_dates(dates: Iterable[date]) -> set[tuple[int, int]]:
    return {(d.year, d.month) for d in dates}
