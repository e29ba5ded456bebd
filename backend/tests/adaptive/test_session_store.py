"""
Tests for the in-memory and SQL session stores.
"""

import pytest

from app.core.adaptive.confidence import ConfidenceTracker
from app.core.adaptive.errors import SessionConflictError, SessionNotFoundError
from app.core.adaptive.session import STATUS_COMPLETED, SessionState, StageHistoryEntry
from app.core.adaptive.session_store import InMemorySessionStore, SqlSessionStore
from app.core.datetime_utils import utc_now
from app.models import AssessmentSession, SessionStatus
from tests.conftest import make_item, make_response, tracker_with_scores


def _state(session_id="session-1"):
    item = make_item("NEO_1", trait="openness", facet="ideas", tags=("anchor",))
    return SessionState(
        session_id=session_id,
        responses=[make_response(item, score=62, raw_score=None)],
        presented_question_ids=["NEO_1", "NEO_2"],
        confidence_state=tracker_with_scores({"openness": [62]}).to_snapshot(),
    )


@pytest.fixture(params=["memory", "sql"])
def store(request, db_session):
    if request.param == "memory":
        return InMemorySessionStore()
    return SqlSessionStore(db_session)


class TestSessionStore:
    """Behaviour shared by both stores."""

    def test_create_then_load(self, store):
        created = store.create(_state())
        assert created.version == 1
        loaded = store.load("session-1")
        assert loaded.session_id == "session-1"
        assert loaded.presented_question_ids == ["NEO_1", "NEO_2"]
        assert loaded.pending_question_ids() == ["NEO_2"]
        assert loaded.responses[0].dimensions == ("openness", "openness_ideas")
        assert loaded.responses[0].tags == ("anchor",)
        assert loaded.version == 1

    def test_tracker_survives_round_trip(self, store):
        store.create(_state())
        tracker = ConfidenceTracker.from_snapshot(store.load("session-1").confidence_state)
        assert tracker.get_summary()["openness"]["score"] == 62

    def test_load_missing_raises(self, store):
        with pytest.raises(SessionNotFoundError) as exc_info:
            store.load("missing")
        assert exc_info.value.session_id == "missing"

    def test_save_bumps_version(self, store):
        store.create(_state())
        state = store.load("session-1")
        state.current_stage = 2
        state.stage_history.append(
            StageHistoryEntry(
                stage=1, completed_at=utc_now(), questions_asked=15, confidence_summary={}
            )
        )
        saved = store.save(state)
        assert saved.version == 2
        reloaded = store.load("session-1")
        assert reloaded.current_stage == 2
        assert reloaded.stage_history[0].questions_asked == 15
        assert reloaded.version == 2

    def test_stale_save_is_rejected(self, store):
        store.create(_state())
        first = store.load("session-1")
        second = store.load("session-1")
        first.current_stage = 2
        store.save(first)
        second.current_stage = 3
        with pytest.raises(SessionConflictError):
            store.save(second)
        assert store.load("session-1").current_stage == 2

    def test_save_missing_raises(self, store):
        with pytest.raises(SessionNotFoundError):
            store.save(_state("never-created"))


class TestInMemorySessionStore:
    def test_duplicate_create_conflicts(self):
        store = InMemorySessionStore()
        store.create(_state())
        with pytest.raises(SessionConflictError):
            store.create(_state())
        assert len(store) == 1

    def test_load_returns_a_copy(self):
        store = InMemorySessionStore()
        store.create(_state())
        loaded = store.load("session-1")
        loaded.presented_question_ids.append("NEO_3")
        assert store.load("session-1").presented_question_ids == ["NEO_1", "NEO_2"]


class TestSqlSessionStore:
    def test_completion_sets_status_and_timestamp(self, db_session):
        store = SqlSessionStore(db_session)
        store.create(_state())
        state = store.load("session-1")
        state.status = STATUS_COMPLETED
        store.save(state)
        db_session.commit()

        row = db_session.query(AssessmentSession).filter_by(session_id="session-1").one()
        assert row.status == SessionStatus.COMPLETED
        assert row.completed_at is not None
        assert store.load("session-1").is_completed

    def test_rows_persist_across_sessions(self, db_session):
        from tests.conftest import TestingSessionLocal

        SqlSessionStore(db_session).create(_state())
        db_session.commit()

        other = TestingSessionLocal()
        try:
            loaded = SqlSessionStore(other).load("session-1")
            assert loaded.responses[0].score == 62
        finally:
            other.close()

    def test_duplicate_create_conflicts(self, db_session):
        store = SqlSessionStore(db_session)
        store.create(_state())
        db_session.commit()

        with pytest.raises(SessionConflictError):
            store.create(_state())
        assert store.load("session-1").version == 1
