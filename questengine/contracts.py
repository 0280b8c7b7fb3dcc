"""
Semantic contracts for the questionnaire engine.

This module defines the immutable data structures that describe a
questionnaire schema. They are shared by every core module (Schema Model,
Type Validators, Concept Mapping Checker, Response Validator, Navigator).

Design principles:
- Frozen dataclasses (immutable after creation)
- Tuples instead of lists so snapshots can be shared between sessions
- No validation logic (contracts, not validators) - integrity checks
  live in core/schema_model.py and run once at load time
- No dependencies on other modules

Contents:
- Closed vocabularies: QuestionType, QuestionnaireStatus, SkipCondition,
  MappingKind, ConceptDomain, GridType, RuleType
- Entities: Questionnaire, Question, Option, GridRow, GridColumn,
  GridDefinition, SkipLogicRule, ConceptMapping, ValidationRule

Usage:
    from questengine.contracts import Question, QuestionType
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple


class QuestionType(str, Enum):
    """
    Closed set of question types.

    String-based enum so definitions can use plain JSON strings.
    """
    BOOLEAN = "boolean"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    GRID = "grid"
    LOOP = "loop"
    FREE_TEXT = "free_text"
    NUMERIC = "numeric"
    DATETIME = "datetime"


# Answers to these types must resolve to a controlled (mappable) value
CONTROLLED_TYPES = frozenset({
    QuestionType.BOOLEAN,
    QuestionType.SINGLE_CHOICE,
    QuestionType.MULTI_CHOICE,
    QuestionType.GRID,
})

CHOICE_TYPES = frozenset({QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE})


class QuestionnaireStatus(str, Enum):
    """Questionnaire lifecycle status"""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SkipCondition(str, Enum):
    """Comparison operators available to skip-logic rules"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class MappingKind(str, Enum):
    """
    Which questionnaire element a concept mapping is attached to.

    Values:
        QUESTION: question reference only
        RESPONSE: response reference only
        PAIR: question and response reference together
    """
    QUESTION = "question"
    RESPONSE = "response"
    PAIR = "pair"


class ConceptDomain(str, Enum):
    """Fixed set of clinical domains a mapping can belong to"""
    CONDITION = "Condition"
    MEASUREMENT = "Measurement"
    DRUG = "Drug"
    OBSERVATION = "Observation"


class GridType(str, Enum):
    """Grid flavours carried over from the authoring model"""
    MATRIX = "matrix"
    RANKING = "ranking"
    RATING = "rating"


class RuleType(str, Enum):
    """Author-declared validation rules applied after shape validation"""
    RANGE = "range"
    ENUM = "enum"
    FORMAT = "format"


@dataclass(frozen=True)
class Questionnaire:
    """
    Questionnaire metadata.

    Attributes:
        id: Questionnaire identifier
        title: Display title
        version: Version label (e.g., '1.0')
        status: Lifecycle status
        description: Optional free-text description
    """
    id: str
    title: str
    version: str
    status: QuestionnaireStatus = QuestionnaireStatus.DRAFT
    description: Optional[str] = None


@dataclass(frozen=True)
class Option:
    """Answer option of a single- or multi-choice question"""
    text: str
    value: str
    display_order: int
    concept_id: Optional[int] = None


@dataclass(frozen=True)
class GridRow:
    value: str
    text: str
    display_order: int
    concept_id: Optional[int] = None


@dataclass(frozen=True)
class GridColumn:
    value: str
    text: str
    display_order: int
    concept_id: Optional[int] = None


@dataclass(frozen=True)
class GridDefinition:
    """
    Row/column structure of a grid question.

    Attributes:
        question_id: Owning grid question
        grid_type: matrix, ranking or rating
        rows: Ordered rows
        columns: Ordered columns
        scale_min: Lower bound for numeric column values (rating grids)
        scale_max: Upper bound for numeric column values (rating grids)

    Note:
        A grid with no rows or no columns is incomplete and cannot be
        activated for collection. Such grids only survive schema loading
        when previews are explicitly allowed.
    """
    question_id: str
    grid_type: GridType = GridType.MATRIX
    rows: Tuple[GridRow, ...] = ()
    columns: Tuple[GridColumn, ...] = ()
    scale_min: Optional[Any] = None
    scale_max: Optional[Any] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.rows) and bool(self.columns)

    def row(self, value: str) -> Optional[GridRow]:
        for row in self.rows:
            if row.value.casefold() == value.casefold():
                return row
        return None

    def column(self, value: str) -> Optional[GridColumn]:
        for column in self.columns:
            if column.value.casefold() == value.casefold():
                return column
        return None


@dataclass(frozen=True)
class Question:
    """
    Single question in a questionnaire.

    Attributes:
        id: Question identifier (unique within the questionnaire)
        text: Question text shown to the respondent
        type: QuestionType tag
        display_order: Position within the questionnaire (unique)
        required: Whether an answer is needed for completion
        concept_id: Optional standard concept attached to the question
        parent_question_id: Parent question (nested / grid-row questions)
        loop_question_id: Loop parent for repeating questions
        loop_position: Position within the loop (1-based)
        requires_mapping: Question must carry a 'question' concept mapping
        domain: Optional clinical domain declared for the question
        grid_row: Row of the parent grid answered by a grid-row child
        constraints: Type specific constraints as (key, value) pairs.
            Tuple of pairs (not dict) for immutability; use constraint().
        loop_iterations: Fixed iteration count (loop questions only)
        loop_max_iterations: Upper bound on iterations (loop questions only)
    """
    id: str
    text: str
    type: QuestionType
    display_order: int
    required: bool = False
    concept_id: Optional[int] = None
    parent_question_id: Optional[str] = None
    loop_question_id: Optional[str] = None
    loop_position: Optional[int] = None
    requires_mapping: bool = False
    domain: Optional[ConceptDomain] = None
    grid_row: Optional[str] = None
    constraints: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)
    loop_iterations: Optional[int] = None
    loop_max_iterations: Optional[int] = None

    def constraint(self, key: str, default: Any = None) -> Any:
        """Look up a type-specific constraint by key"""
        for name, value in self.constraints:
            if name == key:
                return value
        return default

    @property
    def is_loop_child(self) -> bool:
        return self.loop_question_id is not None


@dataclass(frozen=True)
class SkipLogicRule:
    """
    Conditional redirect from one question to another.

    Attributes:
        source: Question whose answer is evaluated
        target: Question presented when the condition holds
        condition: Comparison operator
        value: Comparison value (as authored, usually a string)
        order: Declaration index; earlier rules win ties
    """
    source: str
    target: str
    condition: SkipCondition
    value: Any
    order: int = 0


@dataclass(frozen=True)
class ConceptMapping:
    """
    Association between a questionnaire element and a standard concept.

    Attributes:
        kind: question, response or pair
        concept_id: Standard concept identifier (e.g., 3004249)
        vocabulary_id: Vocabulary of the concept (e.g., 'SNOMED')
        domain: Clinical domain of the concept
        question_id: Question reference (question / pair kinds)
        response_value: Response value reference (response / pair kinds)
    """
    kind: MappingKind
    concept_id: int
    vocabulary_id: str
    domain: ConceptDomain
    question_id: Optional[str] = None
    response_value: Optional[str] = None


@dataclass(frozen=True)
class ValidationRule:
    """
    Author-declared rule evaluated after type-shape validation.

    Examples:
        ValidationRule('bp', RuleType.RANGE, '90-140', 'Blood pressure should be between 90 and 140')
        ValidationRule('smoker', RuleType.ENUM, 'never,former,current')
        ValidationRule('zip', RuleType.FORMAT, r'^\\d{5}$')
    """
    question_id: str
    rule_type: RuleType
    rule_value: str
    error_message: Optional[str] = None
