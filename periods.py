import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from config import get_settings

_PERIOD_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")

T = TypeVar("T")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def parse_period_key(key: str) -> tuple[int, int]:
    match = _PERIOD_KEY_RE.match((key or "").strip())
    if not match:
        raise ValueError(f"Invalid period '{key}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid period '{key}', month out of range")
    return year, month


def current_period_key(today: Optional[date] = None) -> str:
    return month_key(today or local_today())


def shift_period(key: str, months: int) -> str:
    year, month = parse_period_key(key)
    month_index = year * 12 + (month - 1) + months
    return f"{month_index // 12:04d}-{month_index % 12 + 1:02d}"


def iter_period_keys(start: str, end: str) -> Iterator[str]:
    parse_period_key(start)
    parse_period_key(end)
    current = start
    while current <= end:
        yield current
        current = shift_period(current, 1)


def period_bounds(key: str) -> Period:
    year, month = parse_period_key(key)
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return Period(key, first, next_month - date.resolution)


def filter_by_month(transactions: Sequence[T], key: Optional[str]) -> list[T]:
    if not key:
        return list(transactions)
    return [txn for txn in transactions if txn.date.isoformat()[:7] == key]


def filter_by_date_range(
    transactions: Sequence[T], start: date, end: date
) -> list[T]:
    if start > end:
        raise ValueError("Start date must be before end date")
    return [txn for txn in transactions if start <= txn.date <= end]


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    bounds = period_bounds(month_key(today))
    return Period("this_month", bounds.start, bounds.end)
