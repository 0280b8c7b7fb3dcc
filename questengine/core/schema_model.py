"""
Schema Model - Read-only, indexed view of one questionnaire version

Responsibilities:
- Parse a questionnaire definition (JSON-compatible dict) into contracts
- Run every integrity check once, at load time, never per response
- Expose lookups used by validators, the concept checker and the navigator
- Expose the navigation structure (display order, loop bodies, skip edges)

Design principles:
- Fail fast: all issues are collected and raised together as SchemaError
- Immutable after load: tuples + read-only mapping proxies, no setters
- One instance per questionnaire version, shared by every session
- No session knowledge: all session state is passed to other modules

Definition shape:
    {
        "questionnaire": {"id", "title", "version", "status", "description"},
        "questions": [
            {"id", "text", "type", "required", "display_order",
             "concept_id", "parent_question_id", "loop_question_id",
             "loop_position", "requires_mapping", "domain", "grid_row",
             "constraints": {...},
             "options": [{"text", "value", "display_order", "concept_id"}],
             "grid": {"grid_type", "rows": [...], "columns": [...],
                      "scale": {"min", "max"}},
             "loop": {"iterations", "max_iterations"}}
        ],
        "skip_logic": [{"source", "target", "condition", "value"}],
        "concept_mappings": [{"kind", "question_id", "response_value",
                              "concept_id", "vocabulary_id", "domain"}],
        "validation_rules": [{"question_id", "rule_type", "rule_value",
                              "error_message"}]
    }
"""

import logging
import re
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from questengine.config import EngineSettings
from questengine.contracts import (
    CHOICE_TYPES,
    ConceptDomain,
    ConceptMapping,
    GridColumn,
    GridDefinition,
    GridRow,
    GridType,
    MappingKind,
    Option,
    Question,
    Questionnaire,
    QuestionnaireStatus,
    QuestionType,
    RuleType,
    SkipCondition,
    SkipLogicRule,
    ValidationRule,
)
from questengine.errors import NavigationCycleDetected, SchemaError, SchemaIssue, UnknownQuestionError
from questengine.utils.value_parsing import normalize_text, parse_datetime, parse_decimal, parse_range

logger = logging.getLogger(__name__)


class SchemaModel:
    """
    Immutable, indexed questionnaire schema.

    Construct with SchemaModel.from_definition(); the constructor itself
    assumes already-validated contracts.
    """

    def __init__(
        self,
        questionnaire: Questionnaire,
        questions: Tuple[Question, ...],
        options: Dict[str, Tuple[Option, ...]],
        grids: Dict[str, GridDefinition],
        skip_rules: Tuple[SkipLogicRule, ...],
        concept_mappings: Tuple[ConceptMapping, ...],
        validation_rules: Tuple[ValidationRule, ...],
        settings: Optional[EngineSettings] = None,
    ):
        self._questionnaire = questionnaire
        self._settings = settings or EngineSettings()
        self._questions = tuple(sorted(questions, key=lambda q: q.display_order))
        self._by_id = MappingProxyType({q.id: q for q in self._questions})
        self._options = MappingProxyType({
            qid: tuple(sorted(opts, key=lambda o: o.display_order)) for qid, opts in options.items()
        })
        self._grids = MappingProxyType(dict(grids))
        self._skip_rules = tuple(sorted(skip_rules, key=lambda r: r.order))
        self._concept_mappings = tuple(concept_mappings)
        self._validation_rules = tuple(validation_rules)

        # Skip rules by source, declaration order preserved
        rules_by_source: Dict[str, List[SkipLogicRule]] = {}
        for rule in self._skip_rules:
            rules_by_source.setdefault(rule.source, []).append(rule)
        self._rules_by_source = MappingProxyType({k: tuple(v) for k, v in rules_by_source.items()})

        # Loop bodies ordered by loop position
        children: Dict[str, List[Question]] = {}
        for question in self._questions:
            if question.is_loop_child:
                children.setdefault(question.loop_question_id, []).append(question)
        self._loop_children = MappingProxyType({
            loop_id: tuple(sorted(qs, key=lambda q: (q.loop_position or 0, q.display_order)))
            for loop_id, qs in children.items()
        })

        # Navigable sequence: everything outside loop bodies
        self._top_level = tuple(q for q in self._questions if not q.is_loop_child)

        # Concept mapping indices
        by_question: Dict[str, List[ConceptMapping]] = {}
        by_response: Dict[str, List[ConceptMapping]] = {}
        by_pair: Dict[Tuple[str, str], List[ConceptMapping]] = {}
        for mapping in self._concept_mappings:
            if mapping.kind is MappingKind.QUESTION:
                by_question.setdefault(mapping.question_id, []).append(mapping)
            elif mapping.kind is MappingKind.RESPONSE:
                by_response.setdefault(normalize_text(mapping.response_value), []).append(mapping)
            else:
                key = (mapping.question_id, normalize_text(mapping.response_value))
                by_pair.setdefault(key, []).append(mapping)
        self._question_mappings = MappingProxyType({k: tuple(v) for k, v in by_question.items()})
        self._response_mappings = MappingProxyType({k: tuple(v) for k, v in by_response.items()})
        self._pair_mappings = MappingProxyType({k: tuple(v) for k, v in by_pair.items()})

        rules_by_question: Dict[str, List[ValidationRule]] = {}
        for rule in self._validation_rules:
            rules_by_question.setdefault(rule.question_id, []).append(rule)
        self._rules_by_question = MappingProxyType({k: tuple(v) for k, v in rules_by_question.items()})

        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"SchemaModel is immutable (attempted to set '{name}')")
        super().__setattr__(name, value)

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_definition(
        cls,
        definition: Dict[str, Any],
        settings: Optional[EngineSettings] = None,
        allow_incomplete_grids: bool = False,
    ) -> "SchemaModel":
        """
        Parse and validate a questionnaire definition.

        Args:
            definition: Fully resolved questionnaire definition
            settings: Engine settings bound into the model (defaults if None)
            allow_incomplete_grids: Let grids without rows/columns through
                (authoring previews). Responses to such grids are rejected
                with IncompleteGridDefinition verdicts.

        Returns:
            SchemaModel

        Raises:
            SchemaError: If the definition is malformed
            NavigationCycleDetected: If skip logic can revisit a question
        """
        settings = settings or EngineSettings()
        if not isinstance(definition, dict):
            raise SchemaError([SchemaIssue("MissingField", "Definition must be a mapping")])

        parser = _DefinitionParser(definition, settings, allow_incomplete_grids)
        model = parser.parse()

        # Concept completeness needs the indexed model
        from questengine.core.concept_checker import find_mapping_issues
        mapping_issues = find_mapping_issues(model)
        if mapping_issues:
            raise SchemaError(mapping_issues)

        model.check_navigation_cycles()

        logger.info(
            f"Schema loaded: {model.questionnaire.id} v{model.questionnaire.version} "
            f"({len(model.questions)} questions, {len(model.skip_rules)} skip rules, "
            f"{len(model.concept_mappings)} concept mappings)"
        )
        return model

    # =========================================================================
    # Lookups
    # =========================================================================

    @property
    def questionnaire(self) -> Questionnaire:
        return self._questionnaire

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def questions(self) -> Tuple[Question, ...]:
        """All questions in display order"""
        return self._questions

    @property
    def skip_rules(self) -> Tuple[SkipLogicRule, ...]:
        return self._skip_rules

    @property
    def concept_mappings(self) -> Tuple[ConceptMapping, ...]:
        return self._concept_mappings

    def has_question(self, question_id: str) -> bool:
        return question_id in self._by_id

    def question(self, question_id: str) -> Question:
        """
        Raises:
            UnknownQuestionError: If question_id is not in the schema
        """
        try:
            return self._by_id[question_id]
        except KeyError:
            raise UnknownQuestionError(question_id) from None

    def options_for(self, question_id: str) -> Tuple[Option, ...]:
        return self._options.get(question_id, ())

    def option_values(self, question_id: str) -> Tuple[str, ...]:
        return tuple(option.value for option in self.options_for(question_id))

    def grid_for(self, question_id: str) -> Optional[GridDefinition]:
        """Own grid for grid questions, parent grid for grid-row children"""
        grid = self._grids.get(question_id)
        if grid is not None:
            return grid
        question = self._by_id.get(question_id)
        if question is not None and question.parent_question_id is not None:
            return self._grids.get(question.parent_question_id)
        return None

    def is_grid_question(self, question_id: str) -> bool:
        """Grid question itself, or a row/column child of one"""
        question = self.question(question_id)
        if question.type is QuestionType.GRID:
            return True
        parent_id = question.parent_question_id
        return parent_id is not None and parent_id in self._grids

    def skip_rules_from(self, question_id: str) -> Tuple[SkipLogicRule, ...]:
        """Rules with this source, in declaration order"""
        return self._rules_by_source.get(question_id, ())

    def validation_rules_for(self, question_id: str) -> Tuple[ValidationRule, ...]:
        return self._rules_by_question.get(question_id, ())

    def question_mapping(self, question_id: str) -> Optional[ConceptMapping]:
        mappings = self._question_mappings.get(question_id, ())
        return mappings[0] if mappings else None

    def mappings_for_question(self, question_id: str) -> Tuple[ConceptMapping, ...]:
        """Question-kind and pair-kind mappings referencing the question"""
        pairs = tuple(
            m for (qid, _), ms in self._pair_mappings.items() if qid == question_id for m in ms
        )
        return self._question_mappings.get(question_id, ()) + pairs

    def mappings_for_response(self, value: Any) -> Tuple[ConceptMapping, ...]:
        return self._response_mappings.get(normalize_text(value), ())

    def mappings_for_pair(self, question_id: str, value: Any) -> Tuple[ConceptMapping, ...]:
        return self._pair_mappings.get((question_id, normalize_text(value)), ())

    def question_domain(self, question_id: str) -> Optional[ConceptDomain]:
        """Declared domain, else the domain of the question's own mapping"""
        question = self.question(question_id)
        if question.domain is not None:
            return question.domain
        mapping = self.question_mapping(question_id)
        return mapping.domain if mapping is not None else None

    # =========================================================================
    # Navigation structure
    # =========================================================================

    @property
    def top_level_questions(self) -> Tuple[Question, ...]:
        """Questions reachable by sequential navigation (outside loop bodies)"""
        return self._top_level

    @property
    def start_question(self) -> Optional[Question]:
        return self._top_level[0] if self._top_level else None

    def loop_children(self, loop_question_id: str) -> Tuple[Question, ...]:
        return self._loop_children.get(loop_question_id, ())

    def following_question(self, question_id: str) -> Optional[Question]:
        """
        Next question by display order outside loop bodies.

        For a loop child this is the question following its loop parent.
        """
        question = self.question(question_id)
        if question.is_loop_child:
            question = self.question(question.loop_question_id)
        for candidate in self._top_level:
            if candidate.display_order > question.display_order:
                return candidate
        return None

    def next_loop_sibling(self, question_id: str) -> Optional[Question]:
        question = self.question(question_id)
        siblings = self.loop_children(question.loop_question_id)
        for index, sibling in enumerate(siblings):
            if sibling.id == question_id:
                return siblings[index + 1] if index + 1 < len(siblings) else None
        return None

    def structural_successors(self, question_id: str) -> Tuple[str, ...]:
        """
        Every question navigation could move to from question_id.

        Includes skip-rule targets, the sequential successor, loop entry and
        loop exit. Loop repetition (last child -> first child) is excluded:
        it is bounded by iteration counts and caller signals.
        """
        question = self.question(question_id)
        successors: List[str] = [rule.target for rule in self.skip_rules_from(question_id)]

        if question.type is QuestionType.LOOP:
            children = self.loop_children(question_id)
            if children:
                successors.append(children[0].id)

        if question.is_loop_child:
            sibling = self.next_loop_sibling(question_id)
            if sibling is not None:
                successors.append(sibling.id)
            else:
                following = self.following_question(question_id)
                if following is not None:
                    successors.append(following.id)
        else:
            following = self.following_question(question_id)
            if following is not None:
                successors.append(following.id)

        # Preserve order, drop duplicates
        return tuple(dict.fromkeys(successors))

    def check_navigation_cycles(self) -> None:
        """
        Detect cycles in the navigation graph.

        Iterative depth-first search (no recursion) starting at the start
        question, then at any question not yet reached.

        Raises:
            NavigationCycleDetected: On the first back edge found
        """
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {q.id: WHITE for q in self._questions}

        roots = ([self.start_question.id] if self.start_question else []) + [q.id for q in self._questions]
        for root in roots:
            if colour[root] != WHITE:
                continue

            path: List[str] = [root]
            stack = [(root, iter(self.structural_successors(root)))]
            colour[root] = GREY

            while stack:
                node, successors = stack[-1]
                advanced = False
                for successor in successors:
                    if colour[successor] == GREY:
                        raise NavigationCycleDetected(successor, path)
                    if colour[successor] == WHITE:
                        colour[successor] = GREY
                        path.append(successor)
                        stack.append((successor, iter(self.structural_successors(successor))))
                        advanced = True
                        break
                if not advanced:
                    colour[node] = BLACK
                    stack.pop()
                    path.pop()


class _DefinitionParser:
    """
    One-shot parser turning a definition dict into a SchemaModel.

    Collects SchemaIssues instead of stopping at the first problem.
    """

    def __init__(self, definition: Dict[str, Any], settings: EngineSettings, allow_incomplete_grids: bool):
        self.definition = definition
        self.settings = settings
        self.allow_incomplete_grids = allow_incomplete_grids
        self.issues: List[SchemaIssue] = []

    def _issue(self, code: str, message: str, question_id: Optional[str] = None) -> None:
        self.issues.append(SchemaIssue(code, message, question_id))

    def parse(self) -> SchemaModel:
        questionnaire = self._parse_questionnaire(self.definition.get("questionnaire") or {})

        questions: List[Question] = []
        options: Dict[str, Tuple[Option, ...]] = {}
        grids: Dict[str, GridDefinition] = {}

        raw_questions = self.definition.get("questions") or []
        if not raw_questions:
            self._issue("MissingField", "Questionnaire defines no questions")

        for index, raw in enumerate(raw_questions):
            parsed = self._parse_question(raw, index)
            if parsed is None:
                continue
            question, question_options, grid = parsed
            questions.append(question)
            if question_options is not None:
                options[question.id] = question_options
            if grid is not None:
                grids[question.id] = grid

        by_id = self._check_question_set(questions)
        self._check_structure(questions, by_id, grids)

        skip_rules = self._parse_skip_rules(by_id)
        mappings = self._parse_concept_mappings(by_id)
        validation_rules = self._parse_validation_rules(by_id)

        if self.issues:
            raise SchemaError(self.issues)

        return SchemaModel(
            questionnaire=questionnaire,
            questions=tuple(questions),
            options=options,
            grids=grids,
            skip_rules=skip_rules,
            concept_mappings=mappings,
            validation_rules=validation_rules,
            settings=self.settings,
        )

    # -------------------------------------------------------------------------
    # Questionnaire
    # -------------------------------------------------------------------------

    def _parse_questionnaire(self, raw: Dict[str, Any]) -> Questionnaire:
        for key in ("id", "title"):
            if raw.get(key) in (None, ""):
                self._issue("MissingField", f"Questionnaire missing '{key}'")

        status_raw = raw.get("status", QuestionnaireStatus.DRAFT.value)
        try:
            status = QuestionnaireStatus(status_raw)
        except ValueError:
            self._issue("InvalidStatus", f"Unknown questionnaire status '{status_raw}'")
            status = QuestionnaireStatus.DRAFT

        if status is QuestionnaireStatus.ARCHIVED:
            self._issue("ArchivedQuestionnaire", "Archived questionnaires cannot be loaded for collection")

        return Questionnaire(
            id=str(raw.get("id", "")),
            title=str(raw.get("title", "")),
            version=str(raw.get("version", "1.0")),
            status=status,
            description=raw.get("description"),
        )

    # -------------------------------------------------------------------------
    # Questions
    # -------------------------------------------------------------------------

    def _parse_question(self, raw: Dict[str, Any], index: int):
        if not isinstance(raw, dict) or "id" not in raw:
            self._issue("MissingField", f"Question at index {index} missing 'id'")
            return None

        q_id = str(raw["id"])
        if not raw.get("text"):
            self._issue("MissingField", f"Question '{q_id}' missing 'text'", q_id)

        try:
            q_type = QuestionType(raw.get("type"))
        except ValueError:
            self._issue("UnknownQuestionType", f"Question '{q_id}' has unknown type '{raw.get('type')}'", q_id)
            return None

        display_order = raw.get("display_order")
        if isinstance(display_order, bool) or not isinstance(display_order, int):
            self._issue("MissingField", f"Question '{q_id}' missing integer 'display_order'", q_id)
            display_order = -(index + 1)

        domain = None
        if raw.get("domain") is not None:
            try:
                domain = ConceptDomain(raw["domain"])
            except ValueError:
                self._issue("InvalidDomain", f"Question '{q_id}' has unknown domain '{raw['domain']}'", q_id)

        constraints = self._parse_constraints(q_id, q_type, raw.get("constraints") or {})

        loop_def = raw.get("loop") or {}
        loop_iterations = loop_def.get("iterations")
        loop_max = loop_def.get("max_iterations")
        if q_type is QuestionType.LOOP:
            for key, value in (("iterations", loop_iterations), ("max_iterations", loop_max)):
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                    self._issue("InvalidConstraint", f"Loop '{q_id}' has invalid '{key}': {value!r}", q_id)
        elif loop_def:
            self._issue("InvalidConstraint", f"Question '{q_id}' declares loop settings but is not a loop", q_id)

        question = Question(
            id=q_id,
            text=str(raw.get("text", "")),
            type=q_type,
            display_order=display_order,
            required=bool(raw.get("required", False)),
            concept_id=raw.get("concept_id"),
            parent_question_id=raw.get("parent_question_id"),
            loop_question_id=raw.get("loop_question_id"),
            loop_position=raw.get("loop_position"),
            requires_mapping=bool(raw.get("requires_mapping", False)),
            domain=domain,
            grid_row=str(raw["grid_row"]).strip() if raw.get("grid_row") is not None else None,
            constraints=constraints,
            loop_iterations=loop_iterations if isinstance(loop_iterations, int) else None,
            loop_max_iterations=loop_max if isinstance(loop_max, int) else None,
        )

        question_options = None
        if q_type in CHOICE_TYPES:
            question_options = self._parse_options(q_id, raw.get("options") or [])
        elif raw.get("options"):
            logger.warning(f"Question '{q_id}' ({q_type.value}) declares options; they are ignored")

        grid = None
        if q_type is QuestionType.GRID:
            # Grid-row children without their own grid answer the parent grid
            if "grid" in raw or question.parent_question_id is None:
                grid = self._parse_grid(q_id, raw.get("grid") or {})

        return question, question_options, grid

    def _parse_constraints(self, q_id: str, q_type: QuestionType, raw: Dict[str, Any]) -> Tuple[Tuple[str, Any], ...]:
        """Normalize type-specific constraints (numbers to Decimal, dates to datetime)"""
        parsed: Dict[str, Any] = {}

        if q_type is QuestionType.NUMERIC:
            for key in ("min", "max"):
                if raw.get(key) is None:
                    continue
                number = parse_decimal(raw[key])
                if number is None:
                    self._issue("InvalidConstraint", f"Question '{q_id}' has non-numeric '{key}': {raw[key]!r}", q_id)
                else:
                    parsed[key] = number
            if "min" in parsed and "max" in parsed and parsed["min"] > parsed["max"]:
                self._issue("InvalidConstraint", f"Question '{q_id}' has min greater than max", q_id)

        elif q_type is QuestionType.DATETIME:
            formats = raw.get("date_formats") or raw.get("date_format") or list(self.settings.date_formats)
            if isinstance(formats, str):
                formats = [formats]
            parsed["date_formats"] = tuple(formats)
            for key in ("min_date", "max_date"):
                if raw.get(key) is None:
                    continue
                bound = parse_datetime(raw[key], parsed["date_formats"])
                if bound is None:
                    try:
                        bound = datetime.fromisoformat(str(raw[key]))
                    except ValueError:
                        bound = None
                if bound is None:
                    self._issue("InvalidConstraint", f"Question '{q_id}' has unparseable '{key}': {raw[key]!r}", q_id)
                else:
                    parsed[key] = bound
            if "min_date" in parsed and "max_date" in parsed:
                try:
                    inverted = parsed["min_date"] > parsed["max_date"]
                except TypeError:
                    inverted = False
                if inverted:
                    self._issue("InvalidConstraint", f"Question '{q_id}' has min_date after max_date", q_id)

        elif q_type is QuestionType.FREE_TEXT:
            max_length = raw.get("max_length")
            if max_length is not None:
                if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length < 1:
                    self._issue("InvalidConstraint", f"Question '{q_id}' has invalid max_length: {max_length!r}", q_id)
                else:
                    parsed["max_length"] = max_length

        elif raw:
            logger.warning(f"Question '{q_id}' ({q_type.value}) declares constraints {sorted(raw)}; they are ignored")

        return tuple(sorted(parsed.items()))

    def _parse_options(self, q_id: str, raw_options: List[Dict[str, Any]]) -> Tuple[Option, ...]:
        if not raw_options:
            self._issue("MissingOptions", f"Choice question '{q_id}' has no options", q_id)
            return ()

        options = []
        seen = set()
        for index, raw in enumerate(raw_options):
            text = str(raw.get("text", raw.get("value", "")))
            value = raw.get("value", raw.get("text"))
            if value is None or str(value).strip() == "":
                self._issue("MissingField", f"Option {index} of question '{q_id}' has no value", q_id)
                continue
            value = str(value).strip()
            key = normalize_text(value)
            if key in seen:
                self._issue("DuplicateOptionValue", f"Question '{q_id}' repeats option value '{value}'", q_id)
                continue
            seen.add(key)
            options.append(Option(
                text=text,
                value=value,
                display_order=raw.get("display_order", index + 1),
                concept_id=raw.get("concept_id"),
            ))
        return tuple(options)

    def _parse_grid(self, q_id: str, raw: Dict[str, Any]) -> GridDefinition:
        grid_type_raw = raw.get("grid_type", GridType.MATRIX.value)
        try:
            grid_type = GridType(grid_type_raw)
        except ValueError:
            self._issue("InvalidConstraint", f"Grid '{q_id}' has unknown grid_type '{grid_type_raw}'", q_id)
            grid_type = GridType.MATRIX

        rows = self._parse_grid_axis(q_id, "row", raw.get("rows") or [], GridRow)
        columns = self._parse_grid_axis(q_id, "column", raw.get("columns") or [], GridColumn)

        if not rows or not columns:
            missing = " and ".join(name for name, axis in (("rows", rows), ("columns", columns)) if not axis)
            if self.allow_incomplete_grids:
                logger.warning(f"Grid '{q_id}' has no {missing}; responses will be rejected")
            else:
                self._issue("IncompleteGridDefinition", f"Grid '{q_id}' has no {missing}", q_id)

        scale = raw.get("scale") or {}
        scale_min = parse_decimal(scale.get("min")) if scale.get("min") is not None else None
        scale_max = parse_decimal(scale.get("max")) if scale.get("max") is not None else None
        if (scale.get("min") is not None and scale_min is None) or (scale.get("max") is not None and scale_max is None):
            self._issue("InvalidConstraint", f"Grid '{q_id}' has a non-numeric scale bound", q_id)
        elif scale_min is not None and scale_max is not None and scale_min > scale_max:
            self._issue("InvalidConstraint", f"Grid '{q_id}' scale min is greater than max", q_id)

        return GridDefinition(
            question_id=q_id,
            grid_type=grid_type,
            rows=rows,
            columns=columns,
            scale_min=scale_min,
            scale_max=scale_max,
        )

    def _parse_grid_axis(self, q_id: str, axis: str, raw_items: List[Dict[str, Any]], cls):
        items = []
        seen = set()
        for index, raw in enumerate(raw_items):
            value = raw.get("value", raw.get("text"))
            if value is None or str(value).strip() == "":
                self._issue("MissingField", f"Grid '{q_id}' {axis} {index} has no value", q_id)
                continue
            value = str(value).strip()
            key = normalize_text(value)
            if key in seen:
                self._issue("DuplicateGridValue", f"Grid '{q_id}' repeats {axis} value '{value}'", q_id)
                continue
            seen.add(key)
            items.append(cls(
                value=value,
                text=str(raw.get("text", value)),
                display_order=raw.get("display_order", index + 1),
                concept_id=raw.get("concept_id"),
            ))
        return tuple(sorted(items, key=lambda item: item.display_order))

    def _check_question_set(self, questions: List[Question]) -> Dict[str, Question]:
        by_id: Dict[str, Question] = {}
        orders: Dict[int, str] = {}
        for question in questions:
            if question.id in by_id:
                self._issue("DuplicateQuestionId", f"Duplicate question id '{question.id}'", question.id)
                continue
            by_id[question.id] = question

            if question.display_order in orders:
                self._issue(
                    "DuplicateDisplayOrder",
                    f"Questions '{orders[question.display_order]}' and '{question.id}' "
                    f"share display order {question.display_order}",
                    question.id,
                )
            else:
                orders[question.display_order] = question.id
        return by_id

    def _check_structure(self, questions: List[Question], by_id: Dict[str, Question],
                         grids: Dict[str, GridDefinition]) -> None:
        loop_positions: Dict[Tuple[str, int], str] = {}

        for question in questions:
            q_id = question.id

            if question.is_loop_child:
                parent = by_id.get(question.loop_question_id)
                if parent is None:
                    self._issue(
                        "InvalidLoopParent",
                        f"Question '{q_id}' references unknown loop parent '{question.loop_question_id}'",
                        q_id,
                    )
                elif parent.type is not QuestionType.LOOP:
                    self._issue(
                        "InvalidLoopParent",
                        f"Question '{q_id}' loop parent '{parent.id}' is of type '{parent.type.value}', not 'loop'",
                        q_id,
                    )
                elif parent.is_loop_child:
                    self._issue("InvalidLoopParent", f"Loop '{parent.id}' is nested inside another loop", q_id)

                if question.type is QuestionType.LOOP:
                    self._issue("InvalidLoopParent", f"Loop '{q_id}' cannot be a loop child", q_id)

                position = question.loop_position
                if isinstance(position, bool) or not isinstance(position, int) or position < 1:
                    self._issue("MissingLoopPosition", f"Loop child '{q_id}' needs a loop_position >= 1", q_id)
                else:
                    key = (question.loop_question_id, position)
                    if key in loop_positions:
                        self._issue(
                            "DuplicateLoopPosition",
                            f"Questions '{loop_positions[key]}' and '{q_id}' share loop position {position}",
                            q_id,
                        )
                    else:
                        loop_positions[key] = q_id
            elif question.loop_position is not None:
                self._issue("InvalidLoopParent", f"Question '{q_id}' has a loop_position but no loop parent", q_id)

            if question.parent_question_id is not None:
                parent = by_id.get(question.parent_question_id)
                if parent is None:
                    self._issue(
                        "UnknownParentQuestion",
                        f"Question '{q_id}' references unknown parent '{question.parent_question_id}'",
                        q_id,
                    )
                elif question.type is QuestionType.GRID and q_id not in grids and parent.id not in grids:
                    self._issue(
                        "IncompleteGridDefinition",
                        f"Grid question '{q_id}' has no grid definition and its parent '{parent.id}' is not a grid",
                        q_id,
                    )
                elif question.grid_row is not None:
                    grid = grids.get(parent.id)
                    if grid is None:
                        self._issue("InvalidConstraint", f"Question '{q_id}' names a grid row but its parent is not a grid", q_id)
                    elif grid.rows and grid.row(question.grid_row) is None:
                        self._issue(
                            "InvalidConstraint",
                            f"Question '{q_id}' names unknown row '{question.grid_row}' of grid '{parent.id}'",
                            q_id,
                        )

        for question in questions:
            if question.type is QuestionType.LOOP and not any(q.loop_question_id == question.id for q in questions):
                logger.warning(f"Loop '{question.id}' has no children")

    # -------------------------------------------------------------------------
    # Skip logic, concept mappings, validation rules
    # -------------------------------------------------------------------------

    def _parse_skip_rules(self, by_id: Dict[str, Question]) -> Tuple[SkipLogicRule, ...]:
        rules = []
        for index, raw in enumerate(self.definition.get("skip_logic") or []):
            source, target = raw.get("source"), raw.get("target")
            label = f"Skip rule {index} ({source} -> {target})"

            try:
                condition = SkipCondition(raw.get("condition"))
            except ValueError:
                self._issue("InvalidSkipRule", f"{label} has unknown condition '{raw.get('condition')}'", source)
                continue

            if source not in by_id:
                self._issue("InvalidSkipRule", f"{label} references question '{source}' outside the questionnaire", source)
                continue
            if target not in by_id:
                self._issue("InvalidSkipRule", f"{label} references question '{target}' outside the questionnaire", source)
                continue
            if "value" not in raw:
                self._issue("InvalidSkipRule", f"{label} has no comparison value", source)
                continue

            source_q, target_q = by_id[source], by_id[target]
            if source_q.type is QuestionType.LOOP:
                self._issue("InvalidSkipRule", f"{label} starts at a loop question, which holds no value", source)
                continue
            if target_q.is_loop_child and target_q.loop_question_id != source_q.loop_question_id:
                self._issue("InvalidSkipRule", f"{label} jumps into the body of loop '{target_q.loop_question_id}'", source)
                continue

            if condition in (SkipCondition.GREATER_THAN, SkipCondition.LESS_THAN) and \
                    source_q.type not in (QuestionType.NUMERIC, QuestionType.DATETIME) and \
                    parse_decimal(raw["value"]) is None:
                logger.warning(f"{label} compares non-numeric value {raw['value']!r} with '{condition.value}'")

            rules.append(SkipLogicRule(
                source=source,
                target=target,
                condition=condition,
                value=raw["value"],
                order=index,
            ))
        return tuple(rules)

    def _parse_concept_mappings(self, by_id: Dict[str, Question]) -> Tuple[ConceptMapping, ...]:
        mappings = []
        for index, raw in enumerate(self.definition.get("concept_mappings") or []):
            label = f"Concept mapping {index}"
            try:
                kind = MappingKind(raw.get("kind"))
            except ValueError:
                self._issue("InvalidConceptMapping", f"{label} has unknown kind '{raw.get('kind')}'")
                continue

            question_id = raw.get("question_id")
            response_value = raw.get("response_value")
            has_question = question_id is not None
            has_response = response_value is not None and str(response_value).strip() != ""

            expected = {
                MappingKind.QUESTION: (True, False),
                MappingKind.RESPONSE: (False, True),
                MappingKind.PAIR: (True, True),
            }[kind]
            if (has_question, has_response) != expected:
                self._issue(
                    "InvalidConceptMapping",
                    f"{label} of kind '{kind.value}' requires "
                    f"{'a question reference' if expected[0] else 'no question reference'} and "
                    f"{'a response reference' if expected[1] else 'no response reference'}",
                    question_id,
                )
                continue

            if has_question and question_id not in by_id:
                self._issue("InvalidConceptMapping", f"{label} references unknown question '{question_id}'", question_id)
                continue

            try:
                domain = ConceptDomain(raw.get("domain"))
            except ValueError:
                self._issue("InvalidDomain", f"{label} has domain '{raw.get('domain')}' outside the fixed set", question_id)
                continue

            concept_id = raw.get("concept_id")
            if isinstance(concept_id, bool) or not isinstance(concept_id, int):
                self._issue("InvalidConceptMapping", f"{label} needs an integer concept_id", question_id)
                continue
            if not raw.get("vocabulary_id"):
                self._issue("InvalidConceptMapping", f"{label} missing vocabulary_id", question_id)
                continue

            mappings.append(ConceptMapping(
                kind=kind,
                concept_id=concept_id,
                vocabulary_id=str(raw["vocabulary_id"]),
                domain=domain,
                question_id=question_id,
                response_value=str(response_value).strip() if has_response else None,
            ))
        return tuple(mappings)

    def _parse_validation_rules(self, by_id: Dict[str, Question]) -> Tuple[ValidationRule, ...]:
        rules = []
        for index, raw in enumerate(self.definition.get("validation_rules") or []):
            question_id = raw.get("question_id")
            label = f"Validation rule {index}"
            if question_id not in by_id:
                self._issue("InvalidValidationRule", f"{label} references unknown question '{question_id}'", question_id)
                continue
            try:
                rule_type = RuleType(raw.get("rule_type"))
            except ValueError:
                self._issue("InvalidValidationRule", f"{label} has unknown rule_type '{raw.get('rule_type')}'", question_id)
                continue

            rule_value = raw.get("rule_value")
            if not isinstance(rule_value, str) or not rule_value.strip():
                self._issue("InvalidValidationRule", f"{label} needs a non-empty string rule_value", question_id)
                continue
            if rule_type is RuleType.RANGE and parse_range(rule_value) is None:
                self._issue("InvalidValidationRule", f"{label} has malformed range '{rule_value}'", question_id)
                continue
            if rule_type is RuleType.FORMAT:
                try:
                    re.compile(rule_value)
                except re.error as e:
                    self._issue("InvalidValidationRule", f"{label} has invalid pattern: {e}", question_id)
                    continue

            rules.append(ValidationRule(
                question_id=question_id,
                rule_type=rule_type,
                rule_value=rule_value,
                error_message=raw.get("error_message"),
            ))
        return tuple(rules)
