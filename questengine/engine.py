"""
Questionnaire Engine - Facade over the stateless core modules

Wires one SchemaModel to its ResponseValidator and Navigator so callers
(storage / API layers, the console harness) have a single object to hold.

Flow per answer:
    verdict = engine.validate(question_id, value, loop_instance, session)
    if verdict.accepted:
        session = session.record(question_id, value, loop_instance)
        state = engine.next_state(question_id, value, session, loop_instance)

The engine never persists anything: session history goes in, verdicts and
navigation states come out.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from questengine.config import EngineSettings
from questengine.core.navigator import Navigator
from questengine.core.response_validator import ResponseValidator
from questengine.core.schema_model import SchemaModel
from questengine.results import NextState, Verdict
from questengine.session import SessionHistory

logger = logging.getLogger(__name__)


class QuestionnaireEngine:
    """
    Validation + navigation for one questionnaire version.

    Safe to share across sessions: holds only the immutable schema and
    stateless helpers built from it.
    """

    def __init__(self, schema: SchemaModel):
        self.schema = schema
        self.validator = ResponseValidator(schema)
        self.navigator = Navigator(schema)

    @classmethod
    def from_definition(
        cls,
        definition: Dict[str, Any],
        settings: Optional[EngineSettings] = None,
        allow_incomplete_grids: bool = False,
    ) -> "QuestionnaireEngine":
        """
        Load a definition and build the engine.

        Raises:
            SchemaError: If the definition is malformed
            NavigationCycleDetected: If navigation can revisit a question
        """
        schema = SchemaModel.from_definition(definition, settings, allow_incomplete_grids)
        return cls(schema)

    @classmethod
    def from_file(cls, path: str, settings: Optional[EngineSettings] = None) -> "QuestionnaireEngine":
        """Load a JSON definition file and build the engine"""
        from questengine.utils.definition_loader import load_definition
        return cls.from_definition(load_definition(path), settings)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(
        self,
        question_id: str,
        value: Any,
        loop_instance: Optional[int] = None,
        session: Optional[SessionHistory] = None,
    ) -> Verdict:
        return self.validator.validate(question_id, value, loop_instance, session)

    def check_completion(self, session: SessionHistory) -> Verdict:
        """
        Required-question completeness along the session's actual path.

        Questions bypassed by skip logic are not reported as missing.
        """
        path = self.navigator.replay(session, stop_at_unanswered=False)
        return self.validator.check_completion(session, path)

    # =========================================================================
    # Navigation
    # =========================================================================

    def first_question(self) -> NextState:
        return self.navigator.first_question()

    def next_state(
        self,
        current_question_id: str,
        accepted_value: Any,
        session: Optional[SessionHistory] = None,
        loop_instance: Optional[int] = None,
    ) -> NextState:
        return self.navigator.next_state(current_question_id, accepted_value, session, loop_instance)

    def replay(self, session: SessionHistory) -> List[Tuple[str, Optional[int]]]:
        return self.navigator.replay(session)
