"""
Console Test Harness for QuestionnaireEngine

Simple console loop that walks one questionnaire definition end to end:
validate each answer, record accepted ones, ask for the next question.

Usage:
    python main.py [path/to/definition.json]
"""

import json
import logging
import sys
import uuid

from questengine.config import EngineSettings
from questengine.contracts import QuestionType
from questengine.engine import QuestionnaireEngine
from questengine.errors import SchemaError
from questengine.session import SessionHistory
from questengine.utils.definition_loader import list_definitions
from questengine.utils.display_helpers import format_question, format_session_for_display, format_verdict

settings = EngineSettings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STOP_WORDS = {'quit', 'exit', 'stop'}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def ask_yes_no(prompt: str) -> bool:
    """Yes/no prompt at a loop boundary"""
    while True:
        answer = input(f"{prompt} [y/n]: ").strip().lower()
        if answer in ('y', 'yes'):
            return True
        if answer in ('n', 'no'):
            return False
        print("Please answer y or n.")


def pick_definition(argv) -> str:
    if len(argv) > 1:
        return argv[1]
    definitions = list_definitions(settings.definitions_dir)
    if not definitions:
        raise FileNotFoundError(f"No questionnaire definitions in {settings.definitions_dir}")
    return str(definitions[0])


def main(argv=None):
    """Run console session"""
    argv = argv if argv is not None else sys.argv
    print_separator()
    print("QUESTIONNAIRE ENGINE - CONSOLE TEST")
    print_separator()

    try:
        path = pick_definition(argv)
        engine = QuestionnaireEngine.from_file(path, settings)
    except (FileNotFoundError, ValueError, SchemaError) as e:
        print(f"\nFailed to load questionnaire: {e}")
        return 1

    schema = engine.schema
    print(f"\n{schema.questionnaire.title} (v{schema.questionnaire.version})")
    if schema.questionnaire.description:
        print(schema.questionnaire.description)
    print("Type 'quit', 'exit', or 'stop' to end early\n")

    # Session is external - we hold it in this loop
    session = SessionHistory(session_id=uuid.uuid4().hex[:8])
    state = engine.first_question()

    while not state.completed:
        try:
            question = schema.question(state.question_id)
            print_separator("-")
            print(format_question(schema, question.id, state.loop_instance))

            if question.type is QuestionType.LOOP:
                # Loop parents hold no value; the respondent decides whether to enter
                enter = ask_yes_no("Any to add?")
                session = session.with_signal(question.id, 0, enter)
                state = engine.next_state(question.id, None, session)
                continue

            user_input = input("> ").strip()
            if user_input.lower() in STOP_WORDS:
                print("\nSession stopped early.")
                break

            verdict = engine.validate(question.id, user_input, state.loop_instance, session)
            print(format_verdict(verdict))
            if not verdict.accepted:
                continue

            session = session.record(question.id, user_input, state.loop_instance)

            # End of a loop body: ask before navigating so the signal is visible
            if question.is_loop_child and schema.next_loop_sibling(question.id) is None:
                loop = schema.question(question.loop_question_id)
                if loop.loop_iterations is None:
                    session = session.with_signal(loop.id, state.loop_instance, ask_yes_no("Add another?"))

            state = engine.next_state(question.id, user_input, session, state.loop_instance)

        except KeyboardInterrupt:
            print("\n\nSession interrupted by user (Ctrl+C)")
            break

    print_separator()
    completion = engine.check_completion(session)
    if completion.accepted:
        print("QUESTIONNAIRE COMPLETE")
    else:
        print("QUESTIONNAIRE INCOMPLETE")
        print(format_verdict(completion))
    print_separator()

    for row in format_session_for_display(schema, session)['answers']:
        print(f"  {row['label']}: {row['value']}")

    if settings.log_level == 'DEBUG':
        print(json.dumps(session.to_json(), indent=2, ensure_ascii=False))

    return 0


if __name__ == '__main__':
    sys.exit(main())
