import calendar
from datetime import date, datetime
from typing import Tuple


def add_months(start: date, months: int) -> date:
    """
    Shift a date by whole calendar months.
    The day is clamped to the last day of the target month,
    so 31 Jan + 1 month is 28/29 Feb.
    """
    if isinstance(start, datetime):
        start = start.date()
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


def parse_month_key(key: str) -> Tuple[int, int]:
    """'2025-03' -> (2025, 3)"""
    dt = datetime.strptime(key.strip() + "-01", "%Y-%m-%d")
    return dt.year, dt.month
