"""
Value parsing primitives shared by validators and the navigator.

Design principles:
- Dumb, mechanical, predictable
- Never raise for malformed input - return None instead
- No logging, no schema knowledge
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple


_RANGE_PATTERN = re.compile(r'^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$')

GRID_CELL_SEPARATOR = ":"


def is_empty(value: Any) -> bool:
    """
    True for values that carry no answer.

    None, empty / whitespace-only strings and empty collections are empty.
    False and 0 are answers, not empty.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a finite decimal number.

    Returns:
        Decimal, or None for booleans, non-numeric text, NaN and infinity
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not number.is_finite():
        return None
    return number


def parse_datetime(value: Any, formats: Sequence[str]) -> Optional[datetime]:
    """
    Parse a value under the first matching strptime format.

    date / datetime objects pass through (dates become midnight datetimes).

    Returns:
        Naive or aware datetime exactly as parsed, None if no format matches
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def comparable_datetime(value: datetime) -> datetime:
    # Aware and naive datetimes cannot be compared; aware values are read as UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def split_multi(value: Any, delimiter: str) -> List[str]:
    """
    Split a multi-choice value into stripped tokens.

    Accepts a delimited string or any list/tuple/set of values. Blank tokens
    are dropped so 'a,,b' yields ['a', 'b'].
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(delimiter)
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = [str(item) for item in value]
    else:
        parts = [str(value)]
    return [part.strip() for part in parts if part.strip()]


def parse_grid_cell(value: Any) -> Optional[Tuple[Optional[str], str]]:
    """
    Parse a grid answer into (row, column).

    Accepted forms:
        'row:column'                -> ('row', 'column')
        {'row': r, 'column': c}     -> ('r', 'c')
        ['row', 'column']           -> ('row', 'column')
        'column' (no separator)     -> (None, 'column')   grid-row children

    Returns:
        Tuple, or None if the value cannot be read as a cell
    """
    if isinstance(value, dict):
        row = value.get('row')
        column = value.get('column')
        if column is None or is_empty(str(column)):
            return None
        return (str(row).strip() if row is not None else None, str(column).strip())

    if isinstance(value, (list, tuple)):
        if len(value) != 2 or any(is_empty(part) for part in value):
            return None
        return (str(value[0]).strip(), str(value[1]).strip())

    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return (None, str(value))

    if not isinstance(value, str) or is_empty(value):
        return None

    row, sep, column = value.partition(GRID_CELL_SEPARATOR)
    if not sep:
        return (None, value.strip())
    if not row.strip() or not column.strip():
        return None
    return (row.strip(), column.strip())


def parse_range(rule_value: str) -> Optional[Tuple[Decimal, Decimal]]:
    """
    Parse an authored range like '90-140' or '-5-5'.

    Returns:
        (low, high) or None if malformed or inverted
    """
    if not isinstance(rule_value, str):
        return None
    match = _RANGE_PATTERN.match(rule_value)
    if not match:
        return None
    low, high = Decimal(match.group(1)), Decimal(match.group(2))
    if low > high:
        return None
    return (low, high)


def normalize_text(value: Any) -> str:
    """Case-insensitive comparison key"""
    return str(value).strip().casefold()
