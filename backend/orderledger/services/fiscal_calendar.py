"""
Fiscal Calendar - July to June fiscal years

A fiscal year is named by the calendar year it starts in: fiscal year 2024
runs from 1 July 2024 to 30 June 2025 and is labelled "FY24-25".
"""
from datetime import date, datetime, timedelta, timezone
from typing import Tuple, Union
from dateutil.relativedelta import relativedelta

from orderledger.core.config import settings

DateLike = Union[date, datetime]


def as_naive_utc(value: DateLike) -> DateLike:
    """Aware datetimes become naive UTC, the form stored in the database"""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def fiscal_year_of(value: DateLike) -> int:
    """Fiscal year containing a date"""
    value = as_naive_utc(value)
    if value.month >= settings.FISCAL_YEAR_START_MONTH:
        return value.year
    return value.year - 1


def range_of(fiscal_year: int) -> Tuple[datetime, datetime]:
    """First and last instant (millisecond precision) of a fiscal year"""
    start = datetime(fiscal_year, settings.FISCAL_YEAR_START_MONTH, 1)
    end = start + relativedelta(years=1) - timedelta(milliseconds=1)
    return start, end


def contains(fiscal_year: int, value: DateLike) -> bool:
    value = as_naive_utc(value)
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    start, end = range_of(fiscal_year)
    return start <= value <= end


def label(fiscal_year: int) -> str:
    """Short label used in order numbers, e.g. FY24-25"""
    return f"FY{fiscal_year % 100:02d}-{(fiscal_year + 1) % 100:02d}"


def display_name(fiscal_year: int) -> str:
    """Long form, e.g. 2024-25"""
    return f"{fiscal_year}-{(fiscal_year + 1) % 100:02d}"


def parse_display_name(name: str) -> int:
    """Inverse of display_name; accepts an optional 'FY ' prefix"""
    text = name.strip()
    if text.upper().startswith("FY"):
        text = text[2:].strip()
    parts = text.split("-")
    if len(parts) != 2 or not all(p.isdigit() for p in parts) or len(parts[0]) != 4:
        raise ValueError(f"Invalid fiscal year: {name!r}")
    start_year = int(parts[0])
    if int(parts[1]) != (start_year + 1) % (10 ** len(parts[1])):
        raise ValueError(f"Fiscal year {name!r} does not span consecutive years")
    return start_year


def current_fiscal_year(today: DateLike = None) -> int:
    return fiscal_year_of(today or datetime.utcnow())
