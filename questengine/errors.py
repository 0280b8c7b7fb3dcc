"""
Exception types for the questionnaire engine.

Only authoring-time defects and caller defects are raised. Problems with a
single response are never raised; they are returned as verdicts
(see questengine/results.py).
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple


class QuestEngineError(Exception):
    # Base class for engine failures.
    pass


@dataclass(frozen=True)
class SchemaIssue:
    """
    One problem found while loading a questionnaire definition.

    Attributes:
        code: Machine-readable issue kind (e.g., 'IncompleteGridDefinition')
        message: Human-readable explanation
        question_id: Offending question, if the issue is question-specific
    """
    code: str
    message: str
    question_id: Optional[str] = None


class SchemaError(QuestEngineError):
    """
    Malformed questionnaire definition. Loading aborts, nothing is collected.

    Carries every issue found in a single pass so authors can fix them
    together instead of one load attempt per defect.
    """

    def __init__(self, issues: Iterable[SchemaIssue]):
        self.issues: Tuple[SchemaIssue, ...] = tuple(issues)
        lines = [f"[{issue.code}] {issue.message}" for issue in self.issues]
        super().__init__("Schema validation failed:\n  - " + "\n  - ".join(lines))

    @property
    def codes(self) -> set:
        return {issue.code for issue in self.issues}


class NavigationCycleDetected(SchemaError):
    """
    Skip logic leads back to a question already visited in the same pass.

    Authoring defect, surfaced to schema authors rather than respondents.

    Attributes:
        question_id: Question at which the repeat was detected
        path: Questions visited before the repeat, in order
    """

    def __init__(self, question_id: str, path: Iterable[str] = ()):
        self.question_id = question_id
        self.path: Tuple[str, ...] = tuple(path)
        chain = " -> ".join(self.path + (question_id,))
        super().__init__([
            SchemaIssue(
                code="NavigationCycleDetected",
                message=f"Navigation revisits question '{question_id}': {chain}",
                question_id=question_id,
            )
        ])


class UnknownQuestionError(QuestEngineError, KeyError):
    """Caller referenced a question id that is not part of the schema"""

    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Unknown question: {question_id}")

    def __str__(self) -> str:
        return self.args[0]
