"""
Concept Mapping Checker - Existence and consistency checks for concept mappings

Responsibilities:
- Load time: questions flagged requires_mapping carry a 'question' mapping
- Per response: controlled answers of concept-mapped questions resolve to a
  'pair' or 'response' mapping
- Per response: pair mappings agree with the question's domain

Design principles:
- Existence/consistency only: vocabulary content is assumed pre-loaded
  into the schema and is never fetched or validated here
- Never raises for response problems - returns a Verdict or None
- Stateless: every call is a pure function of (schema, question, value)
"""

import logging
from typing import Any, List, Optional, Tuple

from questengine.contracts import CONTROLLED_TYPES, ConceptMapping, Question, QuestionType
from questengine.errors import SchemaIssue
from questengine.results import Verdict, VerdictKind
from questengine.utils.value_parsing import GRID_CELL_SEPARATOR, normalize_text

logger = logging.getLogger(__name__)


def find_mapping_issues(schema) -> List[SchemaIssue]:
    """
    Concept-mapping completeness, checked once at schema load.

    Args:
        schema: SchemaModel (structurally valid)

    Returns:
        SchemaIssues for questions flagged requires_mapping that have no
        'question' kind mapping
    """
    issues = []
    for question in schema.questions:
        if question.requires_mapping and schema.question_mapping(question.id) is None:
            issues.append(SchemaIssue(
                code="MissingQuestionMapping",
                message=f"Question '{question.id}' requires a standardized concept mapping but has none",
                question_id=question.id,
            ))
    return issues


def is_concept_mapped(schema, question: Question) -> bool:
    """
    Whether answers to the question must resolve to concepts.

    A question participates in concept mapping when it is flagged
    requires_mapping, declares a concept_id or is referenced by a question or
    pair mapping.
    """
    return (
        question.requires_mapping
        or question.concept_id is not None
        or bool(schema.mappings_for_question(question.id))
    )


def answer_tokens(question: Question, raw_value: Any, normalized: Any) -> List[Tuple[str, ...]]:
    """
    Mappable tokens of an accepted answer.

    Each entry is a group of alternative spellings for ONE answer element;
    a group is mapped when any of its spellings is mapped.

    Examples:
        boolean 'Yes'            -> [('true', 'Yes')]
        multi_choice ('a', 'b')  -> [('a',), ('b',)]
        grid ('pain', '2')       -> [('pain:2', '2')]
    """
    if normalized is None:
        return []

    if question.type is QuestionType.BOOLEAN:
        spellings = [str(normalized)]
        if isinstance(raw_value, str) and normalize_text(raw_value) != normalized:
            spellings.append(raw_value.strip())
        return [tuple(spellings)]

    if question.type is QuestionType.SINGLE_CHOICE:
        return [(str(normalized),)]

    if question.type is QuestionType.MULTI_CHOICE:
        return [(str(value),) for value in normalized]

    if question.type is QuestionType.GRID:
        row, column = normalized
        return [(f"{row}{GRID_CELL_SEPARATOR}{column}", str(column))]

    return []


def check_response(schema, question: Question, raw_value: Any, normalized: Any) -> Optional[Verdict]:
    """
    Verify concept-mapping integrity for an accepted-shape answer.

    Args:
        schema: SchemaModel
        question: Answered question
        raw_value: Value as submitted
        normalized: Normalized value from the type validator

    Returns:
        None if mapping integrity holds, otherwise an UnmappedResponseValue
        or DomainMismatch verdict
    """
    if question.type not in CONTROLLED_TYPES or not is_concept_mapped(schema, question):
        return None

    question_domain = schema.question_domain(question.id)

    for spellings in answer_tokens(question, raw_value, normalized):
        pair_mappings: Tuple[ConceptMapping, ...] = ()
        response_mappings: Tuple[ConceptMapping, ...] = ()
        for token in spellings:
            pair_mappings += schema.mappings_for_pair(question.id, token)
            response_mappings += schema.mappings_for_response(token)

        if not pair_mappings and not response_mappings:
            logger.warning(f"Question '{question.id}': response value '{spellings[0]}' has no concept mapping")
            return Verdict.reject(
                VerdictKind.UNMAPPED_RESPONSE_VALUE,
                question.id,
                raw_value,
                constraint="concept_mapping",
                message=(
                    f"Response value '{spellings[-1]}' for question '{question.id}' "
                    f"is not mapped to any concept"
                ),
            )

        if question_domain is not None and pair_mappings:
            if not any(m.domain is question_domain for m in pair_mappings):
                found = ", ".join(sorted({m.domain.value for m in pair_mappings}))
                logger.warning(
                    f"Question '{question.id}': pair mapping domain {found} "
                    f"does not match question domain {question_domain.value}"
                )
                return Verdict.reject(
                    VerdictKind.DOMAIN_MISMATCH,
                    question.id,
                    raw_value,
                    constraint=f"domain {question_domain.value}",
                    message=(
                        f"Pair mapping for '{spellings[0]}' is in domain {found}, "
                        f"but question '{question.id}' is in domain {question_domain.value}"
                    ),
                )

    return None
