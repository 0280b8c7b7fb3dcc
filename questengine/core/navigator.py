"""
Navigation Engine - Stateless next-question selection

Responsibilities:
- Compute the next question from the current question and its accepted value
- Evaluate skip-logic rules (first declared rule wins)
- Enter, repeat and leave loops using iteration counts or caller signals
- Replay a session history into its prompting order

Design principles:
- Stateless: all state comes from the SessionHistory parameter
- Deterministic: same input always produces same output
- Pure functions: no side effects (logging excepted)
- Cycles are authoring defects: rejected at schema load, and guarded by a
  visited set during replay

State machine:
    state = (question_id, loop_instance) or Completed
    next_state(current, value, session) -> NextState
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from questengine.contracts import Question, QuestionType, SkipCondition, SkipLogicRule
from questengine.core.response_validator import loop_instance_cap
from questengine.core.type_validators import validate_shape
from questengine.errors import NavigationCycleDetected
from questengine.results import NavigationReason, NextState
from questengine.session import SessionHistory
from questengine.utils.value_parsing import (
    comparable_datetime,
    is_empty,
    normalize_text,
    parse_datetime,
    parse_decimal,
    split_multi,
)

logger = logging.getLogger(__name__)


class Navigator:
    """
    Stateless navigator over one SchemaModel.

    Does not track any state internally - everything it needs about the
    respondent comes from the session history passed to each call.
    """

    def __init__(self, schema):
        self.schema = schema

    # =========================================================================
    # Public API
    # =========================================================================

    def first_question(self) -> NextState:
        """Start state of a new session"""
        start = self.schema.start_question
        if start is None:
            return NextState.done()
        return NextState(question_id=start.id, reason=NavigationReason.START)

    def next_state(
        self,
        current_question_id: str,
        accepted_value: Any,
        session: Optional[SessionHistory] = None,
        loop_instance: Optional[int] = None,
    ) -> NextState:
        """
        Determine the next question.

        Args:
            current_question_id: Question just answered
            accepted_value: Its accepted value (None for loop parents)
            session: Session history (signals and recorded loop instances)
            loop_instance: Instance of the current loop child. Defaults to
                the instance of the latest response recorded for it.

        Returns:
            NextState (completed when navigation runs past the last question)

        Raises:
            UnknownQuestionError: If current_question_id is not in the schema
        """
        question = self.schema.question(current_question_id)
        session = session or SessionHistory()

        if question.type is QuestionType.LOOP:
            return self._enter_loop(question, session)

        if question.is_loop_child:
            if loop_instance is None:
                latest = session.latest(question.id, any_instance=True)
                loop_instance = latest.loop_instance if latest is not None and latest.loop_instance else 1
            return self._advance_in_loop(question, accepted_value, loop_instance, session)

        rule = self._first_matching_rule(question, accepted_value)
        if rule is not None:
            return self._arrive(rule.target, NavigationReason.SKIP_RULE, rule.order)

        following = self.schema.following_question(question.id)
        return self._arrive(following.id if following else None, NavigationReason.SEQUENTIAL)

    def replay(self, session: SessionHistory, stop_at_unanswered: bool = True) -> List[Tuple[str, Optional[int]]]:
        """
        Reconstruct the prompting order of a session.

        Walks from the start question, feeding each question the latest
        recorded value for it. Loop parents need no response.

        Args:
            session: Session history to replay
            stop_at_unanswered: Stop at the first question without a response.
                When False, unanswered questions are passed with no value
                (no skip rule fires) and the walk continues to the end.

        Returns:
            (question_id, loop_instance) pairs in prompting order

        Raises:
            NavigationCycleDetected: If a question/instance is reached twice
        """
        path: List[Tuple[str, Optional[int]]] = []
        visited = set()
        walked = []

        state = self.first_question()
        while not state.completed:
            key = (state.question_id, state.loop_instance)
            if key in visited:
                raise NavigationCycleDetected(state.question_id, [qid for qid, _ in path])
            visited.add(key)
            path.append(key)

            question = self.schema.question(state.question_id)
            value = None
            if question.type is not QuestionType.LOOP:
                response = session.latest(state.question_id, state.loop_instance)
                if response is None:
                    if stop_at_unanswered:
                        break
                else:
                    value = response.value
                    walked.append(response)

            # Only responses already walked are visible, as during collection
            prefix = SessionHistory(
                session_id=session.session_id,
                responses=tuple(walked),
                loop_signals=session.loop_signals,
            )
            state = self.next_state(state.question_id, value, prefix, state.loop_instance)

        return path

    # =========================================================================
    # Loops
    # =========================================================================

    def _enter_loop(self, loop: Question, session: SessionHistory) -> NextState:
        children = self.schema.loop_children(loop.id)
        declined = session.signal_for(loop.id, 0)

        if not children or loop.loop_iterations == 0 or (declined is not None and not declined.add_another):
            logger.debug(f"Loop '{loop.id}' skipped")
            return self._leave_loop(loop)

        recorded = session.instances_for(child.id for child in children)
        instance = (max(recorded) if recorded else 0) + 1
        if instance > loop_instance_cap(self.schema, loop.id):
            logger.debug(f"Loop '{loop.id}' already has {instance - 1} instance(s); leaving")
            return self._leave_loop(loop)

        logger.debug(f"Entering loop '{loop.id}' instance {instance}")
        return NextState(question_id=children[0].id, loop_instance=instance, reason=NavigationReason.LOOP_ENTER)

    def _advance_in_loop(self, question: Question, value: Any, instance: int, session: SessionHistory) -> NextState:
        loop = self.schema.question(question.loop_question_id)

        rule = self._first_matching_rule(question, value)
        if rule is not None:
            target = self.schema.question(rule.target)
            if target.loop_question_id == loop.id:
                return NextState(
                    question_id=target.id,
                    loop_instance=instance,
                    reason=NavigationReason.SKIP_RULE,
                    rule_index=rule.order,
                )
            return self._arrive(target.id, NavigationReason.SKIP_RULE, rule.order)

        sibling = self.schema.next_loop_sibling(question.id)
        if sibling is not None:
            return NextState(question_id=sibling.id, loop_instance=instance, reason=NavigationReason.LOOP_CONTINUE)

        # End of this instance
        if loop.loop_iterations is not None:
            repeat = instance < loop.loop_iterations
        else:
            signal = session.signal_for(loop.id, instance)
            repeat = signal is not None and signal.add_another

        if repeat and instance + 1 <= loop_instance_cap(self.schema, loop.id):
            logger.debug(f"Repeating loop '{loop.id}' as instance {instance + 1}")
            children = self.schema.loop_children(loop.id)
            return NextState(question_id=children[0].id, loop_instance=instance + 1, reason=NavigationReason.LOOP_REPEAT)

        return self._leave_loop(loop)

    def _leave_loop(self, loop: Question) -> NextState:
        following = self.schema.following_question(loop.id)
        return self._arrive(following.id if following else None, NavigationReason.LOOP_EXIT)

    # =========================================================================
    # Skip logic
    # =========================================================================

    def _first_matching_rule(self, question: Question, value: Any) -> Optional[SkipLogicRule]:
        """Rules are tried in declaration order; the earliest match wins"""
        for rule in self.schema.skip_rules_from(question.id):
            if evaluate_condition(self.schema, question, rule.condition, rule.value, value):
                logger.debug(f"Skip rule {rule.order} fired: {rule.source} -> {rule.target}")
                return rule
        return None

    def _arrive(self, question_id: Optional[str], reason: NavigationReason,
                rule_index: Optional[int] = None) -> NextState:
        if question_id is None:
            return NextState.done()
        return NextState(question_id=question_id, reason=reason, rule_index=rule_index)


# =============================================================================
# Condition evaluation
# =============================================================================

def evaluate_condition(schema, question: Question, condition: SkipCondition, expected: Any, value: Any) -> bool:
    """
    Evaluate one skip-logic condition against an accepted value.

    Supports: equals, not_equals, greater_than, less_than, contains

    Rules:
    - Missing / empty values never satisfy a condition
    - Numbers compare as decimals, dates as dates
    - Booleans compare by canonical 'true' / 'false'
    - Multi-choice: equals is set equality, contains is membership
    - Text compares case-insensitively; greater_than / less_than on
      non-numeric text is False
    """
    if is_empty(value):
        return False

    verdict = validate_shape(schema, question, value)
    actual = verdict.normalized_value if verdict.accepted else value

    if question.type is QuestionType.MULTI_CHOICE and isinstance(actual, tuple):
        selected = {normalize_text(item) for item in actual}
        wanted = {normalize_text(item) for item in split_multi(expected, schema.settings.multi_choice_delimiter)}
        if condition is SkipCondition.EQUALS:
            return selected == wanted
        if condition is SkipCondition.NOT_EQUALS:
            return selected != wanted
        if condition is SkipCondition.CONTAINS:
            return bool(wanted) and wanted <= selected
        return False

    if question.type is QuestionType.GRID and isinstance(actual, tuple):
        row, column = actual
        if condition is SkipCondition.CONTAINS:
            return normalize_text(expected) in (normalize_text(column), normalize_text(f"{row}:{column}"))
        actual = column

    if question.type is QuestionType.BOOLEAN:
        if isinstance(expected, bool):
            expected = "true" if expected else "false"
        expected_text = normalize_text(expected)
        expected = schema.settings.boolean_aliases.get(expected_text, expected_text)

    if question.type is QuestionType.DATETIME and isinstance(actual, datetime):
        formats = question.constraint("date_formats") or schema.settings.date_formats
        bound = parse_datetime(expected, formats)
        if bound is None:
            try:
                bound = datetime.fromisoformat(str(expected))
            except ValueError:
                return False
        return _compare(condition, comparable_datetime(actual), comparable_datetime(bound))

    actual_number, expected_number = parse_decimal(actual), parse_decimal(expected)
    if actual_number is not None and expected_number is not None and condition is not SkipCondition.CONTAINS:
        return _compare(condition, actual_number, expected_number)

    actual_text, expected_text = normalize_text(actual), normalize_text(expected)
    if condition is SkipCondition.CONTAINS:
        return expected_text in actual_text
    if condition is SkipCondition.EQUALS:
        return actual_text == expected_text
    if condition is SkipCondition.NOT_EQUALS:
        return actual_text != expected_text

    # Ordering on non-numeric text is undefined
    return False


def _compare(condition: SkipCondition, actual, expected) -> bool:
    if condition is SkipCondition.EQUALS:
        return actual == expected
    if condition is SkipCondition.NOT_EQUALS:
        return actual != expected
    if condition is SkipCondition.GREATER_THAN:
        return actual > expected
    if condition is SkipCondition.LESS_THAN:
        return actual < expected
    return False
