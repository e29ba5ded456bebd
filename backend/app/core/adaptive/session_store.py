"""
Session stores: load and save ``SessionState`` snapshots.

Both stores implement optimistic concurrency. ``state.version`` is the version
the caller loaded; a save whose version no longer matches the stored one
raises ``SessionConflictError`` instead of overwriting a concurrent write.
"""

import copy
import logging
from typing import Dict, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.adaptive.errors import (
    QuestionRepositoryUnavailableError,
    SessionConflictError,
    SessionNotFoundError,
)
from app.core.adaptive.session import (
    STATUS_COMPLETED,
    ResponseRecord,
    SessionState,
    StageHistoryEntry,
)
from app.core.datetime_utils import utc_now
from app.models.models import AssessmentSession, SessionStatus

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def create(self, state: SessionState) -> SessionState:
        ...

    def load(self, session_id: str) -> SessionState:
        ...

    def save(self, state: SessionState) -> SessionState:
        ...


class InMemorySessionStore:
    """Dictionary-backed store for simulations and unit tests."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionState] = {}

    def create(self, state: SessionState) -> SessionState:
        if state.session_id in self._sessions:
            raise SessionConflictError(state.session_id)
        state.version = 1
        self._sessions[state.session_id] = copy.deepcopy(state)
        return state

    def load(self, session_id: str) -> SessionState:
        stored = self._sessions.get(session_id)
        if stored is None:
            raise SessionNotFoundError(session_id)
        return copy.deepcopy(stored)

    def save(self, state: SessionState) -> SessionState:
        stored = self._sessions.get(state.session_id)
        if stored is None:
            raise SessionNotFoundError(state.session_id)
        if stored.version != state.version:
            raise SessionConflictError(state.session_id)
        state.version += 1
        self._sessions[state.session_id] = copy.deepcopy(state)
        return state

    def __len__(self) -> int:
        return len(self._sessions)


def row_to_state(row: AssessmentSession) -> SessionState:
    return SessionState(
        session_id=row.session_id,
        target_total=row.target_total,
        current_stage=row.current_stage,
        responses=[ResponseRecord.from_dict(r) for r in (row.responses or [])],
        presented_question_ids=list(row.presented_question_ids or []),
        confidence_state=dict(row.confidence_state or {}),
        stage_history=[StageHistoryEntry.from_dict(h) for h in (row.stage_history or [])],
        status=row.status.value if isinstance(row.status, SessionStatus) else str(row.status),
        version=row.version,
    )


def apply_state(row: AssessmentSession, state: SessionState) -> None:
    """Copy a snapshot onto its ORM row (JSON columns are replaced, not mutated)."""
    row.current_stage = state.current_stage
    row.target_total = state.target_total
    row.responses = [r.to_dict() for r in state.responses]
    row.presented_question_ids = list(state.presented_question_ids)
    row.confidence_state = dict(state.confidence_state)
    row.stage_history = [h.to_dict() for h in state.stage_history]
    row.status = SessionStatus(state.status)
    if state.status == STATUS_COMPLETED and row.completed_at is None:
        row.completed_at = utc_now()


class SqlSessionStore:
    """
    Store backed by the ``assessment_sessions`` table.

    The caller owns the transaction: ``save`` flushes so version conflicts
    surface here, and the API layer commits once per request.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_row(self, session_id: str) -> AssessmentSession:
        try:
            row = self.db.scalars(
                select(AssessmentSession).where(AssessmentSession.session_id == session_id)
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            raise QuestionRepositoryUnavailableError("loading the assessment session", e) from e
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    def create(self, state: SessionState) -> SessionState:
        row = AssessmentSession(session_id=state.session_id)
        apply_state(row, state)
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise SessionConflictError(state.session_id) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to create session {state.session_id}: {e}")
            raise QuestionRepositoryUnavailableError("creating the assessment session", e) from e
        state.version = row.version
        return state

    def load(self, session_id: str) -> SessionState:
        return row_to_state(self._get_row(session_id))

    def save(self, state: SessionState) -> SessionState:
        row = self._get_row(state.session_id)
        if row.version != state.version:
            logger.warning(
                f"Rejected stale write for session {state.session_id}",
                extra={"session_id": state.session_id},
            )
            raise SessionConflictError(state.session_id)
        apply_state(row, state)
        try:
            self.db.flush()
        except StaleDataError as e:
            raise SessionConflictError(state.session_id) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to save session {state.session_id}: {e}")
            raise QuestionRepositoryUnavailableError("saving the assessment session", e) from e
        state.version = row.version
        return state
