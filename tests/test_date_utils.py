from datetime import date, datetime

import pytest

from rikshaw_ledger.utils.date_utils import add_months, month_bounds, month_key, parse_month_key
from rikshaw_ledger.utils.string_utils import matches_search, normalize_identifier, normalize_phone


@pytest.mark.parametrize("start, months, expected", [
    (date(2025, 1, 10), 1, date(2025, 2, 10)),
    (date(2025, 1, 31), 1, date(2025, 2, 28)),
    (date(2024, 1, 31), 1, date(2024, 2, 29)),
    (date(2025, 11, 15), 3, date(2026, 2, 15)),
    (date(2025, 3, 31), -1, date(2025, 2, 28)),
    (datetime(2025, 5, 31, 14, 30), 1, date(2025, 6, 30)),
])
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected


def test_month_bounds():
    assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    with pytest.raises(ValueError):
        month_bounds(2024, 0)


def test_month_keys():
    assert month_key(date(2025, 3, 9)) == "2025-03"
    assert parse_month_key(" 2025-03 ") == (2025, 3)


def test_string_helpers():
    assert normalize_identifier(" eng 12345a ") == "ENG12345A"
    assert normalize_identifier(None) == ""
    assert normalize_phone("0300-123 4567") == "03001234567"
    assert normalize_phone("+92 300 1234567") == "+923001234567"
    assert matches_search("ASL", "Muhammad Aslam", None)
    assert not matches_search("xyz", "Muhammad Aslam", None)
