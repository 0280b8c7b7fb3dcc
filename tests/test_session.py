"""
Test SessionHistory - append-only response record

Run with: pytest tests/test_session.py
"""

from datetime import datetime, timedelta, timezone

import pytest

from questengine.session import Response, SessionHistory


T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def test_append_returns_new_history():
    """Histories are immutable; append builds a new one"""
    empty = SessionHistory("s1")
    one = empty.record("age", "42", created_at=T0)

    assert empty.responses == ()
    assert len(one.responses) == 1
    assert one.session_id == "s1"


def test_latest_response_supersedes_earlier():
    session = (
        SessionHistory()
        .record("age", "40", created_at=T0)
        .record("age", "41", created_at=T0 + timedelta(minutes=1))
    )

    assert session.latest("age").value == "41"
    assert len(session.responses_for("age")) == 2


def test_decreasing_timestamp_rejected():
    session = SessionHistory().record("age", "40", created_at=T0)

    with pytest.raises(ValueError, match="precedes"):
        session.record("age", "39", created_at=T0 - timedelta(seconds=1))


def test_naive_timestamp_read_as_utc():
    session = SessionHistory().record("age", "40", created_at=T0)

    later = session.record("age", "41", created_at=datetime(2999, 1, 1))
    assert later.latest("age").created_at == datetime(2999, 1, 1, tzinfo=timezone.utc)

    with pytest.raises(ValueError, match="precedes"):
        session.record("age", "39", created_at=datetime(2000, 1, 1))


def test_equal_timestamps_allowed():
    session = SessionHistory().record("a", "1", created_at=T0).record("b", "2", created_at=T0)

    assert [r.question_id for r in session.responses] == ["a", "b"]


def test_loop_instance_queries():
    session = (
        SessionHistory()
        .record("name", "A", 1, created_at=T0)
        .record("name", "B", 2, created_at=T0)
        .record("dose", "5", 2, created_at=T0)
    )

    assert session.has_response("name", 1)
    assert not session.has_response("dose", 1)
    assert not session.has_response("name")
    assert session.instances_for(["name", "dose"]) == {1, 2}
    assert session.latest("name", any_instance=True).value == "B"


def test_signal_for_returns_latest_decision():
    session = (
        SessionHistory()
        .with_signal("meds", 1, True)
        .with_signal("meds", 1, False)
        .with_signal("meds", 2, True)
    )

    assert session.signal_for("meds", 1).add_another is False
    assert session.signal_for("meds", 3) is None
    assert session.signal_for("other", 1) is None


def test_json_round_trip():
    session = (
        SessionHistory("s9")
        .record("fruits", ("apple", "pear"), created_at=T0)
        .record("name", "A", 1, created_at=T0 + timedelta(seconds=5))
        .with_signal("meds", 1, False)
    )

    restored = SessionHistory.from_json(session.to_json())

    assert restored.session_id == "s9"
    assert restored.latest("fruits").value == ["apple", "pear"]
    assert restored.latest("name", 1).created_at == T0 + timedelta(seconds=5)
    assert restored.loop_signals == session.loop_signals


def test_from_json_assumes_utc_for_naive_timestamps():
    data = {
        "session_id": "s1",
        "responses": [{"question_id": "age", "value": "40", "created_at": "2024-05-01T09:00:00"}],
    }

    restored = SessionHistory.from_json(data)

    assert restored.responses[0].created_at == T0
    assert restored.responses[0].loop_instance is None


def test_from_json_rechecks_ordering():
    data = {
        "responses": [
            {"question_id": "a", "value": "1", "created_at": "2024-05-01T09:00:01+00:00"},
            {"question_id": "b", "value": "2", "created_at": "2024-05-01T09:00:00+00:00"},
        ],
    }

    with pytest.raises(ValueError):
        SessionHistory.from_json(data)


def test_default_timestamp_is_timezone_aware():
    response = Response("age", "40")

    assert response.created_at.tzinfo is not None
