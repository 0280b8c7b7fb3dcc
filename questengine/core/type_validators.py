"""
Type Validators - One shape-validation strategy per question type

Responsibilities:
- Check that a raw value fits the question's type and declared constraints
- Produce the normalized value used by concept checks and navigation
- Apply author-declared validation rules (range / enum / format)

Design principles:
- Closed dispatch table over QuestionType (no inheritance hierarchy)
- Every validator is a plain function: (schema, question, value) -> Verdict
- Never raise for bad input: failures are InvalidResponseShape verdicts
  carrying the offending value and the expected constraint
"""

import logging
import re
from typing import Any, Callable, Dict

from questengine.contracts import Question, QuestionType, RuleType
from questengine.results import Verdict, VerdictKind
from questengine.utils.value_parsing import (
    comparable_datetime,
    is_empty,
    normalize_text,
    parse_datetime,
    parse_decimal,
    parse_grid_cell,
    parse_range,
    split_multi,
)

logger = logging.getLogger(__name__)


def _invalid(question: Question, value: Any, constraint: str, message: str) -> Verdict:
    return Verdict.reject(VerdictKind.INVALID_RESPONSE_SHAPE, question.id, value, constraint, message)


# =============================================================================
# Per-type validators
# =============================================================================

def validate_boolean(schema, question: Question, value: Any) -> Verdict:
    """Case-normalizes to exactly 'true' or 'false' (after alias resolution)"""
    if isinstance(value, bool):
        return Verdict.accept(question.id, value, "true" if value else "false")

    normalized = normalize_text(value)
    normalized = schema.settings.boolean_aliases.get(normalized, normalized)
    if normalized not in ("true", "false"):
        return _invalid(question, value, "boolean", f"Expected true or false, got '{value}'")
    return Verdict.accept(question.id, value, normalized)


def validate_single_choice(schema, question: Question, value: Any) -> Verdict:
    """Value equals one option value (case-insensitive)"""
    wanted = normalize_text(value)
    for option in schema.options_for(question.id):
        if normalize_text(option.value) == wanted:
            return Verdict.accept(question.id, value, option.value)

    allowed = ", ".join(schema.option_values(question.id))
    return _invalid(question, value, f"option in [{allowed}]", f"'{value}' is not an option of '{question.id}'")


def validate_multi_choice(schema, question: Question, value: Any) -> Verdict:
    """
    Delimited set of distinct option values.

    The empty set is only allowed for optional questions.
    Normalized value is a tuple of option values in display order.
    """
    tokens = split_multi(value, schema.settings.multi_choice_delimiter)
    if not tokens:
        if question.required:
            return _invalid(question, value, "required", f"Question '{question.id}' requires at least one option")
        return Verdict.accept(question.id, value, ())

    options = schema.options_for(question.id)
    by_key = {normalize_text(option.value): option for option in options}

    selected = set()
    for token in tokens:
        key = normalize_text(token)
        if key not in by_key:
            allowed = ", ".join(schema.option_values(question.id))
            return _invalid(question, value, f"option in [{allowed}]", f"'{token}' is not an option of '{question.id}'")
        if key in selected:
            return _invalid(question, value, "distinct options", f"Option '{token}' selected more than once")
        selected.add(key)

    normalized = tuple(option.value for option in options if normalize_text(option.value) in selected)
    return Verdict.accept(question.id, value, normalized)


def validate_grid(schema, question: Question, value: Any) -> Verdict:
    """
    Value identifies an existing (row, column) cell.

    Grid-row children may submit the column alone; the row comes from
    the question's grid_row. Numeric column values must fall inside the
    grid's declared scale.
    """
    grid = schema.grid_for(question.id)
    cell = parse_grid_cell(value)
    if grid is None or cell is None:
        return _invalid(question, value, "row:column", f"Expected a 'row:column' cell, got '{value}'")

    row_value, column_value = cell
    if question.grid_row is not None:
        if row_value is not None and normalize_text(row_value) != normalize_text(question.grid_row):
            return _invalid(
                question, value, f"row {question.grid_row}",
                f"Question '{question.id}' answers row '{question.grid_row}', not '{row_value}'",
            )
        row_value = question.grid_row
    if row_value is None:
        return _invalid(question, value, "row:column", f"Cell '{value}' does not name a row")

    row = grid.row(row_value)
    if row is None:
        allowed = ", ".join(r.value for r in grid.rows)
        return _invalid(question, value, f"row in [{allowed}]", f"Grid '{grid.question_id}' has no row '{row_value}'")

    column = grid.column(column_value)
    if column is None:
        allowed = ", ".join(c.value for c in grid.columns)
        return _invalid(question, value, f"column in [{allowed}]", f"Grid '{grid.question_id}' has no column '{column_value}'")

    if grid.scale_min is not None or grid.scale_max is not None:
        score = parse_decimal(column.value)
        bounds = f"scale [{grid.scale_min}, {grid.scale_max}]"
        if score is None:
            return _invalid(question, value, bounds, f"Column '{column.value}' is not a numeric scale value")
        if (grid.scale_min is not None and score < grid.scale_min) or \
                (grid.scale_max is not None and score > grid.scale_max):
            return _invalid(question, value, bounds, f"Column value {score} is outside {bounds}")

    return Verdict.accept(question.id, value, (row.value, column.value))


def validate_numeric(schema, question: Question, value: Any) -> Verdict:
    """Decimal number within inclusive [min, max] when declared"""
    number = parse_decimal(value)
    if number is None:
        return _invalid(question, value, "decimal number", f"'{value}' is not a number")

    low, high = question.constraint("min"), question.constraint("max")
    if (low is not None and number < low) or (high is not None and number > high):
        interval = f"[{low if low is not None else '-inf'}, {high if high is not None else 'inf'}]"
        return _invalid(question, value, f"range {interval}", f"{number} is out of range {interval}")

    return Verdict.accept(question.id, value, number)


def validate_datetime(schema, question: Question, value: Any) -> Verdict:
    """Parses under one declared format; inclusive min_date / max_date"""
    formats = question.constraint("date_formats") or schema.settings.date_formats
    parsed = parse_datetime(value, formats)
    if parsed is None:
        return _invalid(question, value, f"format in [{', '.join(formats)}]", f"'{value}' does not match a date format")

    low, high = question.constraint("min_date"), question.constraint("max_date")
    moment = comparable_datetime(parsed)
    if (low is not None and moment < comparable_datetime(low)) or \
            (high is not None and moment > comparable_datetime(high)):
        bounds = (
            f"date range [{low.isoformat() if low else '-'}, "
            f"{high.isoformat() if high else '-'}]"
        )
        return _invalid(question, value, bounds, f"'{value}' is outside {bounds}")

    return Verdict.accept(question.id, value, parsed)


def validate_free_text(schema, question: Question, value: Any) -> Verdict:
    """Always passes shape validation, apart from an optional max_length"""
    text = str(value)
    max_length = question.constraint("max_length")
    if max_length is not None and len(text) > max_length:
        return _invalid(question, value, f"max_length {max_length}", f"Text is longer than {max_length} characters")
    return Verdict.accept(question.id, value, text)


def validate_loop(schema, question: Question, value: Any) -> Verdict:
    """Loop questions hold no value; only their children are answered"""
    if is_empty(value):
        return Verdict.accept(question.id, value, None)
    return _invalid(question, value, "no value", f"Loop question '{question.id}' holds no value")


VALIDATORS: Dict[QuestionType, Callable[..., Verdict]] = {
    QuestionType.BOOLEAN: validate_boolean,
    QuestionType.SINGLE_CHOICE: validate_single_choice,
    QuestionType.MULTI_CHOICE: validate_multi_choice,
    QuestionType.GRID: validate_grid,
    QuestionType.NUMERIC: validate_numeric,
    QuestionType.DATETIME: validate_datetime,
    QuestionType.FREE_TEXT: validate_free_text,
    QuestionType.LOOP: validate_loop,
}


# =============================================================================
# Author-declared rules
# =============================================================================

def _apply_validation_rules(schema, question: Question, value: Any, verdict: Verdict) -> Verdict:
    """Range / enum / format rules, evaluated on accepted shapes only"""
    normalized = verdict.normalized_value
    if normalized is None:
        return verdict

    for rule in schema.validation_rules_for(question.id):
        passed = True
        constraint = f"{rule.rule_type.value} {rule.rule_value}"

        if rule.rule_type is RuleType.RANGE:
            low, high = parse_range(rule.rule_value)
            number = parse_decimal(normalized)
            passed = number is not None and low <= number <= high

        elif rule.rule_type is RuleType.ENUM:
            allowed = {normalize_text(item) for item in rule.rule_value.split(",") if item.strip()}
            elements = normalized if isinstance(normalized, tuple) and question.type is QuestionType.MULTI_CHOICE \
                else (normalized,)
            passed = all(normalize_text(element) in allowed for element in elements)

        elif rule.rule_type is RuleType.FORMAT:
            passed = re.fullmatch(rule.rule_value, str(value).strip()) is not None

        if not passed:
            message = rule.error_message or f"'{value}' violates {constraint}"
            return _invalid(question, value, constraint, message)

    return verdict


# =============================================================================
# Entry point
# =============================================================================

def validate_shape(schema, question: Question, value: Any) -> Verdict:
    """
    Validate a raw value against the question's type.

    Args:
        schema: SchemaModel
        question: Question being answered
        value: Raw candidate value

    Returns:
        Accepted verdict with normalized_value, or InvalidResponseShape
    """
    if question.type is not QuestionType.LOOP and is_empty(value):
        if question.required:
            return _invalid(question, value, "required", f"Question '{question.id}' requires an answer")
        return Verdict.accept(question.id, value, None)

    validator = VALIDATORS[question.type]
    verdict = validator(schema, question, value)
    if not verdict.accepted:
        logger.debug(f"Shape check failed for '{question.id}': {verdict.message}")
        return verdict

    return _apply_validation_rules(schema, question, value, verdict)
