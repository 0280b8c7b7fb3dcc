"""
Test value parsing primitives
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from questengine.utils.value_parsing import (
    comparable_datetime,
    is_empty,
    parse_datetime,
    parse_decimal,
    parse_grid_cell,
    parse_range,
    split_multi,
)


@pytest.mark.parametrize("value,expected", [
    (None, True), ("", True), ("   ", True), ([], True),
    (False, False), (0, False), ("0", False), (["a"], False),
])
def test_is_empty(value, expected):
    assert is_empty(value) is expected


@pytest.mark.parametrize("value,expected", [
    ("95", Decimal("95")), (" 1.25 ", Decimal("1.25")), (7, Decimal("7")), (2.5, Decimal("2.5")),
    ("abc", None), (True, None), ("NaN", None), ("Infinity", None), (None, None),
])
def test_parse_decimal(value, expected):
    assert parse_decimal(value) == expected


def test_parse_datetime_first_matching_format():
    formats = ("%Y-%m-%d", "%d/%m/%Y")

    assert parse_datetime("2024-02-29", formats) == datetime(2024, 2, 29)
    assert parse_datetime("29/02/2024", formats) == datetime(2024, 2, 29)
    assert parse_datetime("2023-02-29", formats) is None
    assert parse_datetime(12, formats) is None


def test_comparable_datetime_reads_aware_values_as_utc():
    aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    assert comparable_datetime(aware) == datetime(2024, 1, 1, 10, 0)


def test_split_multi():
    assert split_multi("a, b,,c ", ",") == ["a", "b", "c"]
    assert split_multi(["x", " y "], ",") == ["x", "y"]
    assert split_multi(None, ",") == []


@pytest.mark.parametrize("value,expected", [
    ("head:2", ("head", "2")),
    ({"row": "head", "column": 2}, ("head", "2")),
    (("head", "2"), ("head", "2")),
    ("2", (None, "2")),
    (3, (None, "3")),
    (":2", None),
    ("", None),
    (["only-one"], None),
])
def test_parse_grid_cell(value, expected):
    assert parse_grid_cell(value) == expected


def test_parse_range():
    assert parse_range("90-140") == (Decimal("90"), Decimal("140"))
    assert parse_range("-5 - 5") == (Decimal("-5"), Decimal("5"))
    assert parse_range("140-90") is None
    assert parse_range("low-high") is None
