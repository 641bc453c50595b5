from datetime import date

import pytest

from models import Transaction, TransactionType
from periods import (
    filter_by_date_range,
    filter_by_month,
    iter_period_keys,
    parse_period_key,
    period_bounds,
    resolve_period,
    shift_period,
)


def _ledger() -> list[Transaction]:
    days = [date(2025, 3, 9), date(2025, 2, 27), date(2025, 3, 1), date(2024, 3, 5)]
    return [
        Transaction(
            id=f"t{idx}",
            date=day,
            type=TransactionType.expense,
            category="Dining",
            amount=10,
        )
        for idx, day in enumerate(days)
    ]


def test_filter_by_month_without_key_returns_everything_in_order() -> None:
    ledger = _ledger()
    assert filter_by_month(ledger, None) == ledger
    assert filter_by_month(ledger, "") == ledger


def test_filter_by_month_keeps_relative_order() -> None:
    result = filter_by_month(_ledger(), "2025-03")
    assert [t.id for t in result] == ["t0", "t2"]


def test_filter_by_date_range_is_inclusive() -> None:
    result = filter_by_date_range(_ledger(), date(2025, 2, 27), date(2025, 3, 1))
    assert [t.id for t in result] == ["t1", "t2"]

    with pytest.raises(ValueError):
        filter_by_date_range(_ledger(), date(2025, 3, 2), date(2025, 3, 1))


def test_parse_period_key_rejects_garbage() -> None:
    assert parse_period_key("2025-03") == (2025, 3)
    for bad in ("2025-3", "2025-00", "2025-13", "March", ""):
        with pytest.raises(ValueError):
            parse_period_key(bad)


def test_iter_period_keys_crosses_year_boundary() -> None:
    assert list(iter_period_keys("2024-11", "2025-02")) == [
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
    ]
    assert list(iter_period_keys("2025-03", "2025-01")) == []
    assert shift_period("2025-01", -1) == "2024-12"


def test_period_bounds_handles_leap_february() -> None:
    bounds = period_bounds("2024-02")
    assert bounds.start == date(2024, 2, 1)
    assert bounds.end == date(2024, 2, 29)


def test_resolve_period_variants() -> None:
    today = date(2025, 3, 15)

    this_month = resolve_period(None, None, None, today=today)
    assert (this_month.start, this_month.end) == (date(2025, 3, 1), date(2025, 3, 31))

    last_month = resolve_period("last_month", None, None, today=today)
    assert (last_month.start, last_month.end) == (date(2025, 2, 1), date(2025, 2, 28))

    custom = resolve_period("custom", "2025-01-01", "2025-01-31", today=today)
    assert custom.slug == "custom"

    with pytest.raises(ValueError):
        resolve_period("custom", "2025-02-01", None, today=today)
    with pytest.raises(ValueError):
        resolve_period("custom", "2025-02-01", "2025-01-01", today=today)
