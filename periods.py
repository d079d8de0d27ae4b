from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class Period:
    """Half-open calendar range: start <= day < end."""

    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def year_period(year: int) -> Period:
    if year < date.min.year or year >= date.max.year:
        raise ValueError("Invalid year parameter")
    return Period(str(year), date(year, 1, 1), date(year + 1, 1, 1))


def parse_year(raw: Optional[str], *, required: bool = True) -> Optional[Period]:
    if raw is None or not raw.strip():
        if required:
            raise ValueError("Year parameter required")
        return None
    value = raw.strip()
    if len(value) > 4 or not (value.isascii() and value.isdigit()):
        raise ValueError("Invalid year parameter")
    return year_period(int(value))


def parse_day(value: object) -> date:
    """Accept an ISO date or datetime (``2025-01-10T15:30:00Z``) and keep the day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Invalid date")
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise ValueError("Invalid date") from exc
