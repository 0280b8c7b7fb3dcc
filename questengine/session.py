"""
Session history passed explicitly into validate() / next_state().

A session is one respondent's pass through a questionnaire. The engine holds
no session state of its own: the caller (storage/API layer) owns the
durable copy and hands an immutable SessionHistory to every call.

Rules:
- Immutable after creation (frozen dataclasses, tuples)
- Append-only: append() / with_signal() return NEW histories
- Response timestamps are non-decreasing within a session
- Serializable to/from JSON for the integration layer
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc_aware(value: datetime) -> datetime:
    """Naive timestamps are read as UTC"""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@dataclass(frozen=True)
class Response:
    """
    One accepted response.

    Attributes:
        question_id: Answered question
        value: Raw value as submitted
        created_at: Creation timestamp (naive values are read as UTC on append)
        loop_instance: Loop instance (1-based) for loop children, else None
    """
    question_id: str
    value: Any
    created_at: datetime = field(default_factory=_utcnow)
    loop_instance: Optional[int] = None


@dataclass(frozen=True)
class LoopSignal:
    """
    Caller-provided "add another" decision for a loop.

    Attributes:
        loop_question_id: Loop parent question
        after_instance: Instance just completed (0 = before the first one)
        add_another: True to request another instance, False to exit
    """
    loop_question_id: str
    after_instance: int
    add_another: bool


@dataclass(frozen=True)
class SessionHistory:
    """
    Sealed, append-only record of a session's accepted responses.

    Attributes:
        session_id: Session identifier (opaque to the engine)
        responses: Accepted responses in time order
        loop_signals: Add-another decisions in the order received
    """
    session_id: Optional[str] = None
    responses: Tuple[Response, ...] = ()
    loop_signals: Tuple[LoopSignal, ...] = ()

    # ========================
    # Append-only updates
    # ========================

    def append(self, response: Response) -> "SessionHistory":
        """
        Return a new history with the response added.

        Raises:
            ValueError: If the response is older than the latest one
                (write ordering is the integration layer's job)
        """
        if response.created_at.tzinfo is None:
            response = replace(response, created_at=_as_utc_aware(response.created_at))
        if self.responses and response.created_at < self.responses[-1].created_at:
            raise ValueError(
                f"Response for '{response.question_id}' at {response.created_at.isoformat()} "
                f"precedes latest response at {self.responses[-1].created_at.isoformat()}"
            )
        return SessionHistory(
            session_id=self.session_id,
            responses=self.responses + (response,),
            loop_signals=self.loop_signals,
        )

    def record(self, question_id: str, value: Any, loop_instance: Optional[int] = None,
               created_at: Optional[datetime] = None) -> "SessionHistory":
        """Shorthand for append(Response(...))"""
        return self.append(Response(
            question_id=question_id,
            value=value,
            created_at=created_at or _utcnow(),
            loop_instance=loop_instance,
        ))

    def with_signal(self, loop_question_id: str, after_instance: int, add_another: bool) -> "SessionHistory":
        """Return a new history with an add-another decision recorded"""
        signal = LoopSignal(loop_question_id, after_instance, add_another)
        return SessionHistory(
            session_id=self.session_id,
            responses=self.responses,
            loop_signals=self.loop_signals + (signal,),
        )

    # ========================
    # Queries
    # ========================

    def responses_for(self, question_id: str, loop_instance: Optional[int] = None,
                      any_instance: bool = False) -> List[Response]:
        return [
            r for r in self.responses
            if r.question_id == question_id
            and (any_instance or r.loop_instance == loop_instance)
        ]

    def latest(self, question_id: str, loop_instance: Optional[int] = None,
               any_instance: bool = False) -> Optional[Response]:
        """Latest response for (question, loop instance); later ones supersede earlier ones"""
        matches = self.responses_for(question_id, loop_instance, any_instance)
        return matches[-1] if matches else None

    def has_response(self, question_id: str, loop_instance: Optional[int] = None) -> bool:
        return self.latest(question_id, loop_instance) is not None

    def instances_for(self, question_ids: Iterable[str]) -> set:
        """Loop instances recorded for any of the given (loop child) questions"""
        wanted = set(question_ids)
        return {
            r.loop_instance for r in self.responses
            if r.question_id in wanted and r.loop_instance is not None
        }

    def signal_for(self, loop_question_id: str, after_instance: int) -> Optional[LoopSignal]:
        """Latest add-another decision for a loop boundary"""
        found = None
        for signal in self.loop_signals:
            if signal.loop_question_id == loop_question_id and signal.after_instance == after_instance:
                found = signal
        return found

    # ========================
    # Serialization
    # ========================

    def to_json(self) -> Dict[str, Any]:
        """Serialize to JSON-safe dict"""
        return {
            'session_id': self.session_id,
            'responses': [
                {
                    'question_id': r.question_id,
                    'value': list(r.value) if isinstance(r.value, tuple) else r.value,
                    'created_at': r.created_at.isoformat(),
                    'loop_instance': r.loop_instance,
                }
                for r in self.responses
            ],
            'loop_signals': [
                {
                    'loop_question_id': s.loop_question_id,
                    'after_instance': s.after_instance,
                    'add_another': s.add_another,
                }
                for s in self.loop_signals
            ],
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "SessionHistory":
        """
        Deserialize from JSON dict.

        Responses are re-appended one by one so timestamp ordering is
        re-checked on the way in.
        """
        history = SessionHistory(session_id=data.get('session_id'))
        for item in data.get('responses', []):
            created_at = _as_utc_aware(datetime.fromisoformat(item['created_at']))
            history = history.append(Response(
                question_id=item['question_id'],
                value=item.get('value'),
                created_at=created_at,
                loop_instance=item.get('loop_instance'),
            ))
        for item in data.get('loop_signals', []):
            history = history.with_signal(
                item['loop_question_id'], int(item['after_instance']), bool(item['add_another'])
            )
        return history
