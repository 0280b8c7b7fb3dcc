"""
Result types returned by the engine.

These are the ONLY return types of validate(), check_completion() and
next_state(). Recoverable problems are verdicts, never exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class VerdictKind(str, Enum):
    """
    Outcome of validating a response or a session.

    Values:
        ACCEPTED: Response (or session) passes every check
        INVALID_RESPONSE_SHAPE: Value does not fit the question type or
            one of its declared constraints
        INCOMPLETE_GRID_DEFINITION: Grid has no rows or no columns
        LOOP_INSTANCE_MISMATCH: Loop instance given for a non-loop question,
            or missing for a loop child
        UNMAPPED_RESPONSE_VALUE: Controlled answer has no concept mapping
        DOMAIN_MISMATCH: Pair mapping domain differs from the question domain
        INCOMPLETE_REQUIRED_QUESTION: Session completion requested while
            required questions are unanswered (session-level)
    """
    ACCEPTED = "Accepted"
    INVALID_RESPONSE_SHAPE = "InvalidResponseShape"
    INCOMPLETE_GRID_DEFINITION = "IncompleteGridDefinition"
    LOOP_INSTANCE_MISMATCH = "LoopInstanceMismatch"
    UNMAPPED_RESPONSE_VALUE = "UnmappedResponseValue"
    DOMAIN_MISMATCH = "DomainMismatch"
    INCOMPLETE_REQUIRED_QUESTION = "IncompleteRequiredQuestion"


@dataclass(frozen=True)
class Verdict:
    """
    Validation verdict.

    Attributes:
        kind: VerdictKind
        question_id: Question the verdict is about (None for session-level)
        value: Offending (or accepted) raw value
        constraint: Rule or constraint that was violated
            (e.g., 'range [90, 140]', 'option', 'loop_instance')
        message: Human-readable explanation
        normalized_value: Canonical value for accepted responses
            (Decimal, date, option tuple, (row, column), ...)
        missing_question_ids: Unanswered required questions
            (IncompleteRequiredQuestion only). Loop children are reported
            as '<question_id>#<loop_instance>'.
    """
    kind: VerdictKind
    question_id: Optional[str] = None
    value: Any = None
    constraint: Optional[str] = None
    message: Optional[str] = None
    normalized_value: Any = None
    missing_question_ids: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.kind is VerdictKind.ACCEPTED

    @classmethod
    def accept(cls, question_id: Optional[str], value: Any = None, normalized_value: Any = None) -> "Verdict":
        return cls(
            kind=VerdictKind.ACCEPTED,
            question_id=question_id,
            value=value,
            normalized_value=normalized_value,
        )

    @classmethod
    def reject(
        cls,
        kind: VerdictKind,
        question_id: Optional[str],
        value: Any,
        constraint: str,
        message: str,
    ) -> "Verdict":
        return cls(
            kind=kind,
            question_id=question_id,
            value=value,
            constraint=constraint,
            message=message,
        )


class NavigationReason(str, Enum):
    """Why the navigator chose the next state"""
    START = "start"
    SKIP_RULE = "skip_rule"
    SEQUENTIAL = "sequential"
    LOOP_ENTER = "loop_enter"
    LOOP_CONTINUE = "loop_continue"
    LOOP_REPEAT = "loop_repeat"
    LOOP_EXIT = "loop_exit"
    COMPLETED = "completed"


@dataclass(frozen=True)
class NextState:
    """
    Navigation decision.

    Attributes:
        question_id: Question to present next (None when completed)
        loop_instance: Loop instance for loop children, None otherwise
        reason: NavigationReason
        rule_index: Declaration index of the skip rule that fired
    """
    question_id: Optional[str]
    loop_instance: Optional[int] = None
    reason: NavigationReason = NavigationReason.SEQUENTIAL
    rule_index: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.question_id is None

    @classmethod
    def done(cls) -> "NextState":
        return cls(question_id=None, reason=NavigationReason.COMPLETED)
