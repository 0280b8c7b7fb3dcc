"""
Response Validation Engine - Per-response and per-session verdicts

Responsibilities:
- Single entry point for validating one candidate response
- Orchestrate grid completeness, type-shape, loop-instance and
  concept-mapping checks in a fixed order
- Evaluate required-question completeness when completion is requested

Design principles:
- Stateless: all session knowledge arrives through SessionHistory
- Pure functions: no side effects beyond the returned verdict (logging
  excepted). Persisting an accepted response is the caller's job.
- First failure wins: checks short-circuit in order
- Per-response problems are verdicts; only unknown question ids raise
"""

import logging
from typing import Any, Iterable, List, Optional, Tuple

from questengine.contracts import QuestionType
from questengine.core import concept_checker
from questengine.core.type_validators import validate_shape
from questengine.results import Verdict, VerdictKind
from questengine.session import SessionHistory

logger = logging.getLogger(__name__)


def loop_instance_cap(schema, loop_question_id: str) -> int:
    """Highest loop instance allowed for a loop"""
    loop = schema.question(loop_question_id)
    cap = schema.settings.max_loop_iterations
    if loop.loop_max_iterations is not None:
        cap = min(cap, loop.loop_max_iterations)
    if loop.loop_iterations is not None:
        cap = min(cap, loop.loop_iterations)
    return cap


def requested_loop_instances(schema, loop_question_id: str, session: SessionHistory) -> List[int]:
    """
    Loop instances the session has asked for.

    Sources:
    - instances already recorded for any loop child
    - the fixed iteration count, when the loop declares one
    - add-another signals (instance N+1 after a positive signal for N)
    - instance 1 implicitly, unless the loop has zero iterations
    A loop declined up front (exit signal before the first instance) requests
    nothing beyond what was already recorded, fixed iterations included.

    Returns:
        Sorted instance numbers, capped by the loop's iteration limits
    """
    loop = schema.question(loop_question_id)
    children = [child.id for child in schema.loop_children(loop_question_id)]
    instances = set(session.instances_for(children))

    declined = session.signal_for(loop_question_id, 0)
    if declined is not None and not declined.add_another:
        logger.debug(f"Loop '{loop_question_id}' declined; only recorded instances are requested")
    elif loop.loop_iterations is not None:
        instances.update(range(1, loop.loop_iterations + 1))
    else:
        instances.add(1)
        for signal in session.loop_signals:
            if signal.loop_question_id == loop_question_id and signal.add_another:
                instances.add(signal.after_instance + 1)

    cap = loop_instance_cap(schema, loop_question_id)
    return sorted(i for i in instances if 1 <= i <= cap)


class ResponseValidator:
    """
    Validates responses against one SchemaModel.

    Holds only the (immutable) schema, so a single instance can serve any
    number of sessions concurrently.
    """

    def __init__(self, schema):
        self.schema = schema

    # =========================================================================
    # Public API
    # =========================================================================

    def validate(
        self,
        question_id: str,
        value: Any,
        loop_instance: Optional[int] = None,
        session: Optional[SessionHistory] = None,
    ) -> Verdict:
        """
        Validate one candidate response.

        Order of checks (first failure wins):
        1. Grid completeness (grid questions and grid-row children)
        2. Type shape + declared constraints
        3. Loop instance presence / absence
        4. Concept mapping integrity

        Args:
            question_id: Question being answered
            value: Raw candidate value
            loop_instance: 1-based loop instance for loop children, else None
            session: Prior accepted responses (optional)

        Returns:
            Verdict (Accepted carries the normalized value)

        Raises:
            UnknownQuestionError: If question_id is not in the schema
        """
        question = self.schema.question(question_id)
        session = session or SessionHistory()

        if self.schema.is_grid_question(question_id):
            grid = self.schema.grid_for(question_id)
            if grid is None or not grid.is_complete:
                return self._log(Verdict.reject(
                    VerdictKind.INCOMPLETE_GRID_DEFINITION,
                    question_id,
                    value,
                    constraint="grid rows and columns",
                    message=f"Grid for question '{question_id}' has no rows or no columns",
                ))

        verdict = validate_shape(self.schema, question, value)
        if not verdict.accepted:
            return self._log(verdict)

        mismatch = self._check_loop_instance(question_id, value, loop_instance, session)
        if mismatch is not None:
            return self._log(mismatch)

        mapping_verdict = concept_checker.check_response(self.schema, question, value, verdict.normalized_value)
        if mapping_verdict is not None:
            return self._log(mapping_verdict)

        return self._log(verdict)

    def check_completion(
        self,
        session: SessionHistory,
        path: Optional[Iterable[Tuple[str, Optional[int]]]] = None,
    ) -> Verdict:
        """
        Session-level required-question completeness.

        Args:
            session: All accepted responses of the session
            path: (question_id, loop_instance) pairs actually presented.
                When given, only these are checked, so questions bypassed
                by skip logic are not reported. When omitted, every required
                question and every required loop child of every requested
                loop instance is checked.

        Returns:
            Accepted, or IncompleteRequiredQuestion listing missing ids
            ('<question_id>#<loop_instance>' for loop children)
        """
        missing: List[str] = []

        if path is not None:
            for question_id, loop_instance in path:
                question = self.schema.question(question_id)
                if question.type is QuestionType.LOOP or not question.required:
                    continue
                if not session.has_response(question_id, loop_instance):
                    missing.append(self._label(question_id, loop_instance))
        else:
            for question in self.schema.top_level_questions:
                if question.type is QuestionType.LOOP:
                    for instance in requested_loop_instances(self.schema, question.id, session):
                        for child in self.schema.loop_children(question.id):
                            if child.required and not session.has_response(child.id, instance):
                                missing.append(self._label(child.id, instance))
                elif question.required and not session.has_response(question.id):
                    missing.append(question.id)

        # Keep first-seen order, drop repeats
        missing = list(dict.fromkeys(missing))

        if missing:
            logger.info(f"Session {session.session_id}: {len(missing)} required question(s) unanswered")
            return Verdict(
                kind=VerdictKind.INCOMPLETE_REQUIRED_QUESTION,
                constraint="required",
                message=f"Required questions unanswered: {', '.join(missing)}",
                missing_question_ids=tuple(missing),
            )

        logger.info(f"Session {session.session_id}: all required questions answered")
        return Verdict.accept(None)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_loop_instance(self, question_id: str, value: Any, loop_instance: Optional[int],
                             session: SessionHistory) -> Optional[Verdict]:
        question = self.schema.question(question_id)

        if not question.is_loop_child:
            if loop_instance is None:
                return None
            return Verdict.reject(
                VerdictKind.LOOP_INSTANCE_MISMATCH, question_id, value,
                constraint="loop_instance absent",
                message=f"Question '{question_id}' is not inside a loop but loop instance {loop_instance} was given",
            )

        if loop_instance is None or isinstance(loop_instance, bool) or not isinstance(loop_instance, int) \
                or loop_instance < 1:
            return Verdict.reject(
                VerdictKind.LOOP_INSTANCE_MISMATCH, question_id, value,
                constraint="loop_instance >= 1",
                message=f"Loop child '{question_id}' needs a loop instance >= 1, got {loop_instance!r}",
            )

        loop_id = question.loop_question_id
        cap = loop_instance_cap(self.schema, loop_id)
        if loop_instance > cap:
            return Verdict.reject(
                VerdictKind.LOOP_INSTANCE_MISMATCH, question_id, value,
                constraint=f"loop_instance <= {cap}",
                message=f"Loop '{loop_id}' allows at most {cap} instance(s), got {loop_instance}",
            )

        # Instances are opened in order: no gaps after the highest recorded one
        children = [child.id for child in self.schema.loop_children(loop_id)]
        recorded = session.instances_for(children)
        highest = max(recorded) if recorded else 0
        if loop_instance > highest + 1:
            return Verdict.reject(
                VerdictKind.LOOP_INSTANCE_MISMATCH, question_id, value,
                constraint=f"loop_instance <= {highest + 1}",
                message=f"Loop '{loop_id}' has {highest} recorded instance(s); instance {loop_instance} skips ahead",
            )

        return None

    @staticmethod
    def _label(question_id: str, loop_instance: Optional[int]) -> str:
        return question_id if loop_instance is None else f"{question_id}#{loop_instance}"

    @staticmethod
    def _log(verdict: Verdict) -> Verdict:
        if verdict.accepted:
            logger.debug(f"Accepted response for '{verdict.question_id}'")
        else:
            logger.warning(f"Rejected response for '{verdict.question_id}': {verdict.kind.value} ({verdict.constraint})")
        return verdict
