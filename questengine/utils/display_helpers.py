"""
Display Helpers - Convert questions, verdicts and sessions to readable text

Used by the console harness. Nothing here affects validation or navigation.
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, List, Optional

from questengine.contracts import QuestionType
from questengine.results import Verdict


# Value mappings: canonical values -> readable text
VALUE_LABELS = {
    'true': 'Yes',
    'false': 'No',
    'yes': 'Yes',
    'no': 'No',
    True: 'Yes',
    False: 'No',
}

# Input hints per question type
TYPE_HINTS = {
    QuestionType.BOOLEAN: "yes / no",
    QuestionType.MULTI_CHOICE: "comma-separated options",
    QuestionType.NUMERIC: "number",
    QuestionType.DATETIME: "date",
    QuestionType.GRID: "row:column",
}


def format_value(value: Any) -> str:
    """
    Convert a raw or normalized value to human-readable text.

    Args:
        value: str, bool, Decimal, datetime, option tuple, (row, column) ...

    Returns:
        Readable text
    """
    if value is None or value == '':
        return "Not answered"

    if isinstance(value, bool):
        return VALUE_LABELS[value]

    if isinstance(value, Decimal):
        return format(value.normalize(), 'f') if value == value.to_integral_value() else str(value)

    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()

    if isinstance(value, (tuple, list)):
        return ", ".join(format_value(item) for item in value)

    text = str(value)
    return VALUE_LABELS.get(text.strip().lower(), text)


def format_question(schema, question_id: str, loop_instance: Optional[int] = None) -> str:
    """
    Question prompt with options / grid layout and an input hint.

    Args:
        schema: SchemaModel
        question_id: Question to render
        loop_instance: Loop instance shown as '(#n)' for loop children
    """
    question = schema.question(question_id)
    lines = []

    header = question.text
    if loop_instance is not None:
        header = f"{header} (#{loop_instance})"
    if question.required and question.type is not QuestionType.LOOP:
        header = f"{header} *"
    lines.append(header)

    for option in schema.options_for(question_id):
        lines.append(f"  - {option.value}: {option.text}")

    grid = schema.grid_for(question_id)
    if grid is not None:
        rows = [r for r in grid.rows if question.grid_row is None or r.value == question.grid_row]
        lines.append("  rows:    " + ", ".join(f"{r.value} ({r.text})" for r in rows))
        lines.append("  columns: " + ", ".join(f"{c.value} ({c.text})" for c in grid.columns))

    hint = TYPE_HINTS.get(question.type)
    if question.type is QuestionType.GRID and question.grid_row is not None:
        hint = "column"
    if hint:
        lines.append(f"  [{hint}]")

    return "\n".join(lines)


def format_verdict(verdict: Verdict) -> str:
    """
    One-line verdict summary.

    Examples:
        'Accepted: 120'
        'InvalidResponseShape (range [90, 140]): 200 is out of range [90, 140]'
    """
    if verdict.accepted:
        if verdict.question_id is None:
            return "Accepted"
        return f"Accepted: {format_value(verdict.normalized_value)}"

    text = verdict.kind.value
    if verdict.constraint:
        text = f"{text} ({verdict.constraint})"
    if verdict.message:
        text = f"{text}: {verdict.message}"
    return text


def format_session_for_display(schema, session) -> Dict[str, List[Dict[str, str]]]:
    """
    Latest answer per (question, loop instance), in display order.

    Returns:
        dict: {
            'answers': [
                {'label': 'Systolic blood pressure', 'value': '120'},
                {'label': 'Medication name (#1)', 'value': 'Metformin'},
                ...
            ]
        }
    """
    display_view = {'answers': []}

    seen = {
        (r.question_id, r.loop_instance) for r in session.responses
        if schema.has_question(r.question_id)
    }

    for question in schema.questions:
        instances = sorted(
            {i for qid, i in seen if qid == question.id},
            key=lambda i: -1 if i is None else i,
        )
        for instance in instances:
            response = session.latest(question.id, instance)
            label = question.text if instance is None else f"{question.text} (#{instance})"
            display_view['answers'].append({
                'label': label,
                'value': format_value(response.value),
            })

    return display_view
