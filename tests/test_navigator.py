"""
Test Suite for Navigation Engine

TDD-style blocks: skip-rule conditions, sequential flow, loops, replay.
"""

import unittest

import pytest

from questengine.contracts import QuestionType, SkipCondition
from questengine.core.navigator import Navigator, evaluate_condition
from questengine.core.schema_model import SchemaModel
from questengine.errors import UnknownQuestionError
from questengine.results import NavigationReason
from questengine.session import SessionHistory


def pain_definition():
    return {
        "questionnaire": {"id": "pain", "title": "Pain", "version": "1"},
        "questions": [
            {"id": "pain_level", "text": "Pain level (0-3)", "type": "numeric", "display_order": 1,
             "required": True, "constraints": {"min": 0, "max": 3}},
            {"id": "pain_location", "text": "Where?", "type": "free_text", "display_order": 2},
            {"id": "pain_duration", "text": "How long?", "type": "free_text", "display_order": 3},
            {"id": "symptom_grid", "text": "Symptoms", "type": "grid", "display_order": 4,
             "grid": {"rows": [{"value": "nausea"}, {"value": "fever"}],
                      "columns": [{"value": "none"}, {"value": "some"}, {"value": "severe"}]}},
            {"id": "comments", "text": "Comments", "type": "free_text", "display_order": 5},
        ],
        "skip_logic": [
            {"source": "pain_level", "target": "symptom_grid", "condition": "equals", "value": "3"},
            {"source": "pain_level", "target": "pain_duration", "condition": "greater_than", "value": "1"},
        ],
    }


def medication_loop_definition(loop=None, skip_logic=None):
    return {
        "questionnaire": {"id": "meds", "title": "Meds", "version": "1"},
        "questions": [
            {"id": "takes_meds", "text": "Any medication?", "type": "boolean", "display_order": 1},
            {"id": "medications", "text": "Medications", "type": "loop", "display_order": 2,
             "loop": loop or {}},
            {"id": "name", "text": "Name", "type": "free_text", "display_order": 3, "required": True,
             "loop_question_id": "medications", "loop_position": 1},
            {"id": "dose", "text": "Dose", "type": "numeric", "display_order": 4, "required": True,
             "loop_question_id": "medications", "loop_position": 2},
            {"id": "notes", "text": "Notes", "type": "free_text", "display_order": 5,
             "loop_question_id": "medications", "loop_position": 3},
            {"id": "allergies", "text": "Allergies", "type": "free_text", "display_order": 6},
        ],
        "skip_logic": skip_logic or [
            {"source": "takes_meds", "target": "allergies", "condition": "equals", "value": "false"},
        ],
    }


# =============================================================================
# PART 1: Skip rules and sequential flow
# =============================================================================

class TestSkipRules(unittest.TestCase):

    def setUp(self):
        self.navigator = Navigator(SchemaModel.from_definition(pain_definition()))

    def test_first_question(self):
        state = self.navigator.first_question()

        self.assertEqual(state.question_id, "pain_level")
        self.assertEqual(state.reason, NavigationReason.START)

    def test_equals_rule_bypasses_intermediate_questions(self):
        state = self.navigator.next_state("pain_level", "3")

        self.assertEqual(state.question_id, "symptom_grid")
        self.assertEqual(state.reason, NavigationReason.SKIP_RULE)
        self.assertEqual(state.rule_index, 0)

    def test_first_declared_rule_wins(self):
        # "3.0" satisfies both rules; the equals rule is declared first
        state = self.navigator.next_state("pain_level", "3.0")

        self.assertEqual(state.question_id, "symptom_grid")

    def test_second_rule_when_first_does_not_match(self):
        state = self.navigator.next_state("pain_level", "2")

        self.assertEqual(state.question_id, "pain_duration")
        self.assertEqual(state.rule_index, 1)

    def test_sequential_when_no_rule_matches(self):
        state = self.navigator.next_state("pain_level", "0")

        self.assertEqual(state.question_id, "pain_location")
        self.assertEqual(state.reason, NavigationReason.SEQUENTIAL)
        self.assertIsNone(state.rule_index)

    def test_completed_after_last_question(self):
        state = self.navigator.next_state("comments", "done")

        self.assertTrue(state.completed)
        self.assertEqual(state.reason, NavigationReason.COMPLETED)

    def test_deterministic(self):
        first = self.navigator.next_state("pain_level", "3")
        second = self.navigator.next_state("pain_level", "3")

        self.assertEqual(first, second)

    def test_unknown_question_raises(self):
        with self.assertRaises(UnknownQuestionError):
            self.navigator.next_state("ghost", "1")

    def test_empty_value_fires_no_rule(self):
        state = self.navigator.next_state("pain_level", None)

        self.assertEqual(state.question_id, "pain_location")


# =============================================================================
# PART 2: Condition evaluation
# =============================================================================

def condition_schema():
    return SchemaModel.from_definition({
        "questionnaire": {"id": "c", "title": "C", "version": "1"},
        "questions": [
            {"id": "flag", "text": "Flag", "type": "boolean", "display_order": 1},
            {"id": "fruits", "text": "Fruits", "type": "multi_choice", "display_order": 2,
             "options": [{"value": "apple"}, {"value": "pear"}, {"value": "plum"}]},
            {"id": "visit", "text": "Visit", "type": "datetime", "display_order": 3},
            {"id": "note", "text": "Note", "type": "free_text", "display_order": 4},
            {"id": "age", "text": "Age", "type": "numeric", "display_order": 5},
            {"id": "grid", "text": "Grid", "type": "grid", "display_order": 6,
             "grid": {"rows": [{"value": "r1"}], "columns": [{"value": "low"}, {"value": "high"}]}},
        ],
    })


@pytest.mark.parametrize("question_id,condition,expected,value,result", [
    ("flag", SkipCondition.EQUALS, "true", "Yes", True),
    ("flag", SkipCondition.EQUALS, True, "TRUE", True),
    ("flag", SkipCondition.EQUALS, "no", "false", True),
    ("flag", SkipCondition.NOT_EQUALS, "true", "false", True),
    ("fruits", SkipCondition.EQUALS, "pear,apple", "apple, pear", True),
    ("fruits", SkipCondition.EQUALS, "apple", "apple,pear", False),
    ("fruits", SkipCondition.CONTAINS, "pear", "apple,pear", True),
    ("fruits", SkipCondition.CONTAINS, "plum", "apple,pear", False),
    ("fruits", SkipCondition.NOT_EQUALS, "apple", "apple,pear", True),
    ("visit", SkipCondition.GREATER_THAN, "2024-01-01", "2024-06-01", True),
    ("visit", SkipCondition.LESS_THAN, "2024-01-01", "2024-06-01", False),
    ("note", SkipCondition.EQUALS, "hello", "HELLO ", True),
    ("note", SkipCondition.CONTAINS, "pain", "Back pain at night", True),
    ("note", SkipCondition.GREATER_THAN, "abc", "xyz", False),
    ("age", SkipCondition.GREATER_THAN, "65", "70", True),
    ("age", SkipCondition.LESS_THAN, "65", "70", False),
    ("age", SkipCondition.EQUALS, "70", "70.0", True),
    ("grid", SkipCondition.EQUALS, "high", "r1:high", True),
    ("grid", SkipCondition.CONTAINS, "r1:low", "r1:low", True),
])
def test_evaluate_condition(question_id, condition, expected, value, result):
    schema = condition_schema()

    assert evaluate_condition(schema, schema.question(question_id), condition, expected, value) is result


def test_missing_value_never_matches():
    schema = condition_schema()

    assert not evaluate_condition(schema, schema.question("note"), SkipCondition.NOT_EQUALS, "x", None)
    assert not evaluate_condition(schema, schema.question("note"), SkipCondition.NOT_EQUALS, "x", "  ")


# =============================================================================
# PART 3: Loops
# =============================================================================

class TestLoops(unittest.TestCase):

    def setUp(self):
        self.schema = SchemaModel.from_definition(medication_loop_definition())
        self.navigator = Navigator(self.schema)

    def test_sequential_into_loop_parent(self):
        state = self.navigator.next_state("takes_meds", "true")

        self.assertEqual(state.question_id, "medications")
        self.assertIsNone(state.loop_instance)

    def test_skip_rule_bypasses_loop(self):
        state = self.navigator.next_state("takes_meds", "no")

        self.assertEqual(state.question_id, "allergies")

    def test_enter_loop_at_first_child(self):
        state = self.navigator.next_state("medications", None, SessionHistory())

        self.assertEqual(state.question_id, "name")
        self.assertEqual(state.loop_instance, 1)
        self.assertEqual(state.reason, NavigationReason.LOOP_ENTER)

    def test_declined_loop_exits(self):
        session = SessionHistory().with_signal("medications", 0, False)

        state = self.navigator.next_state("medications", None, session)

        self.assertEqual(state.question_id, "allergies")
        self.assertEqual(state.reason, NavigationReason.LOOP_EXIT)

    def test_children_in_loop_position_order(self):
        state = self.navigator.next_state("name", "Aspirin", loop_instance=1)

        self.assertEqual(state.question_id, "dose")
        self.assertEqual(state.loop_instance, 1)
        self.assertEqual(state.reason, NavigationReason.LOOP_CONTINUE)

    def test_instance_defaults_to_latest_response(self):
        session = SessionHistory().record("name", "A", 1).record("name", "B", 2)

        state = self.navigator.next_state("name", "B", session)

        self.assertEqual(state.loop_instance, 2)

    def test_add_another_repeats_loop(self):
        session = SessionHistory().record("name", "A", 1).record("dose", "5", 1).with_signal("medications", 1, True)

        state = self.navigator.next_state("notes", "", session, loop_instance=1)

        self.assertEqual(state.question_id, "name")
        self.assertEqual(state.loop_instance, 2)
        self.assertEqual(state.reason, NavigationReason.LOOP_REPEAT)

    def test_no_signal_exits_loop(self):
        state = self.navigator.next_state("notes", "", SessionHistory(), loop_instance=1)

        self.assertEqual(state.question_id, "allergies")
        self.assertEqual(state.reason, NavigationReason.LOOP_EXIT)

    def test_loop_at_end_completes(self):
        definition = medication_loop_definition()
        definition["questions"] = [q for q in definition["questions"] if q["id"] != "allergies"]
        definition["skip_logic"] = []
        navigator = Navigator(SchemaModel.from_definition(definition))

        state = navigator.next_state("notes", "", SessionHistory(), loop_instance=1)

        self.assertTrue(state.completed)


def test_fixed_iterations_repeat_without_signals():
    navigator = Navigator(SchemaModel.from_definition(medication_loop_definition({"iterations": 2})))

    second = navigator.next_state("notes", "", SessionHistory(), loop_instance=1)
    after = navigator.next_state("notes", "", SessionHistory(), loop_instance=2)

    assert (second.question_id, second.loop_instance) == ("name", 2)
    assert after.question_id == "allergies"


def test_zero_iterations_skip_loop():
    navigator = Navigator(SchemaModel.from_definition(medication_loop_definition({"iterations": 0})))

    state = navigator.next_state("medications", None)

    assert state.question_id == "allergies"


def test_max_iterations_caps_add_another():
    navigator = Navigator(SchemaModel.from_definition(medication_loop_definition({"max_iterations": 1})))
    session = SessionHistory().with_signal("medications", 1, True)

    state = navigator.next_state("notes", "", session, loop_instance=1)

    assert state.reason is NavigationReason.LOOP_EXIT


def test_skip_rule_within_loop_keeps_instance():
    definition = medication_loop_definition(skip_logic=[
        {"source": "name", "target": "notes", "condition": "equals", "value": "none"},
    ])
    navigator = Navigator(SchemaModel.from_definition(definition))

    state = navigator.next_state("name", "None", loop_instance=2)

    assert (state.question_id, state.loop_instance) == ("notes", 2)
    assert state.reason is NavigationReason.SKIP_RULE


def test_skip_rule_out_of_loop_drops_instance():
    definition = medication_loop_definition(skip_logic=[
        {"source": "name", "target": "allergies", "condition": "equals", "value": "stop"},
    ])
    navigator = Navigator(SchemaModel.from_definition(definition))

    state = navigator.next_state("name", "stop", loop_instance=1)

    assert state.question_id == "allergies"
    assert state.loop_instance is None


# =============================================================================
# PART 4: Replay
# =============================================================================

def collect(navigator, answers, add_another):
    """Drive next_state the way a caller would, returning prompts and session"""
    session = SessionHistory("replay")
    prompts = []
    state = navigator.first_question()
    while not state.completed:
        prompts.append((state.question_id, state.loop_instance))
        question = navigator.schema.question(state.question_id)
        if question.type is QuestionType.LOOP:
            state = navigator.next_state(question.id, None, session)
            continue
        value = answers[(state.question_id, state.loop_instance)]
        session = session.record(state.question_id, value, state.loop_instance)
        if question.loop_question_id and navigator.schema.next_loop_sibling(question.id) is None:
            session = session.with_signal(question.loop_question_id, state.loop_instance,
                                          state.loop_instance < add_another)
        state = navigator.next_state(state.question_id, value, session, state.loop_instance)
    return prompts, session


def test_replay_reproduces_prompting_order():
    navigator = Navigator(SchemaModel.from_definition(medication_loop_definition()))
    answers = {("takes_meds", None): "yes", ("allergies", None): "none"}
    for instance in (1, 2, 3):
        answers[("name", instance)] = f"med{instance}"
        answers[("dose", instance)] = str(instance * 10)
        answers[("notes", instance)] = ""

    prompts, session = collect(navigator, answers, add_another=3)

    assert prompts == [
        ("takes_meds", None), ("medications", None),
        ("name", 1), ("dose", 1), ("notes", 1),
        ("name", 2), ("dose", 2), ("notes", 2),
        ("name", 3), ("dose", 3), ("notes", 3),
        ("allergies", None),
    ]
    assert navigator.replay(session) == prompts
    assert navigator.replay(session) == navigator.replay(session)


def test_replay_stops_at_first_unanswered():
    navigator = Navigator(SchemaModel.from_definition(pain_definition()))
    session = SessionHistory().record("pain_level", "3")

    assert navigator.replay(session) == [("pain_level", None), ("symptom_grid", None)]


def test_replay_to_end_follows_skip_rules():
    navigator = Navigator(SchemaModel.from_definition(pain_definition()))
    session = SessionHistory().record("pain_level", "3")

    path = navigator.replay(session, stop_at_unanswered=False)

    assert [qid for qid, _ in path] == ["pain_level", "symptom_grid", "comments"]


if __name__ == "__main__":
    unittest.main()
