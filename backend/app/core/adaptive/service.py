"""
Adaptive assessment session service.

One instance serves one request: it loads the session snapshot, rehydrates
the confidence tracker, applies submitted answers, asks the coordinator for
the next batch and saves the new snapshot. Nothing is kept between requests.

    service = AdaptiveAssessmentService(repository, store, config)
    step = service.start_session()
    step = service.submit_responses(step.session_id, [SubmittedResponse(...), ...])
"""

import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from app.core.adaptive.confidence import ConfidenceTracker, DimensionResponse
from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.coordinator import (
    MultiStageCoordinator,
    NextQuestionsResult,
    average_big_five_confidence,
)
from app.core.adaptive.dimensions import DimensionMapper
from app.core.adaptive.errors import SessionCompleteError, UnknownQuestionError
from app.core.adaptive.repository import Item, QuestionRepository
from app.core.adaptive.session import STATUS_COMPLETED, ResponseRecord, SessionState
from app.core.adaptive.session_store import SessionStore
from app.core.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SubmittedResponse:
    """An answer as submitted by the client (``score`` already normalized to 0-100)."""

    question_id: str
    score: float
    raw_score: Optional[float] = None
    response_time_ms: Optional[float] = None


@dataclass
class AssessmentStep:
    """Result of starting a session or submitting a batch of answers."""

    session_id: str
    result: NextQuestionsResult
    progress: Dict[str, Any]
    is_complete: bool
    answered: List[str] = field(default_factory=list)


class AdaptiveAssessmentService:
    def __init__(
        self,
        repository: QuestionRepository,
        store: SessionStore,
        config: Optional[AdaptiveEngineConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository
        self.store = store
        self.config = config or AdaptiveEngineConfig()
        self.coordinator = MultiStageCoordinator(self.config, rng or random.Random())

    # ------------------------------------------------------------------
    # Session flow
    # ------------------------------------------------------------------

    def start_session(self, session_id: Optional[str] = None) -> AssessmentStep:
        """Create a session and select its first Stage 1 batch."""
        start = time.perf_counter()
        state = SessionState(
            session_id=session_id or uuid.uuid4().hex,
            target_total=self.config.target_total,
        )
        tracker = ConfidenceTracker()
        result = self.coordinator.get_next_questions(state, self.repository, tracker)
        state.presented_question_ids.extend(item.question_id for item in result.questions)
        state.confidence_state = tracker.to_snapshot()
        self.store.create(state)

        logger.info(
            f"Started adaptive session with {len(result.questions)} questions",
            extra={
                "session_id": state.session_id,
                "stage": state.current_stage,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return self._step(state, result)

    def submit_responses(
        self, session_id: str, responses: Sequence[SubmittedResponse]
    ) -> AssessmentStep:
        """
        Record answers and return what the respondent should see next.

        While part of the last batch is still unanswered, those pending items
        are returned again and no new batch is selected. A failed selection
        leaves the stored session unchanged.

        Args:
            session_id: Session to update.
            responses: Answers to items from the last presented batch.

        Returns:
            The next step: pending items, a new batch, or the completion
            result.

        Raises:
            SessionNotFoundError: If no session has this id.
            SessionCompleteError: If the session already finished.
            UnknownQuestionError: If an answer targets an item that was never
                presented or was already answered, or repeats within the
                request.
        """
        start = time.perf_counter()
        state = self.store.load(session_id)
        if state.is_completed:
            raise SessionCompleteError(session_id)

        items = self._validate_responses(state, responses)
        tracker = ConfidenceTracker.from_snapshot(state.confidence_state)
        for response in responses:
            self._apply_response(state, tracker, items[response.question_id], response)

        pending_ids = state.pending_question_ids()
        if pending_ids:
            result = self._pending_result(state, tracker, pending_ids)
        else:
            result = self.coordinator.get_next_questions(state, self.repository, tracker)
            state.presented_question_ids.extend(item.question_id for item in result.questions)

        if self.coordinator.is_complete(state):
            state.status = STATUS_COMPLETED
            logger.info(
                "Adaptive session completed",
                extra={"session_id": session_id, "question_count": state.answered_count},
            )

        state.confidence_state = tracker.to_snapshot()
        self.store.save(state)

        logger.info(
            f"Recorded {len(responses)} responses, serving {len(result.questions)} questions",
            extra={
                "session_id": session_id,
                "stage": state.current_stage,
                "question_count": state.answered_count,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return self._step(state, result, answered=[r.question_id for r in responses])

    def _validate_responses(
        self, state: SessionState, responses: Sequence[SubmittedResponse]
    ) -> Dict[str, Item]:
        presented = set(state.presented_question_ids)
        answered = set(state.answered_ids)
        seen = set()
        for response in responses:
            qid = response.question_id
            if qid in answered:
                raise UnknownQuestionError(qid, "already answered")
            if qid not in presented:
                raise UnknownQuestionError(qid, "was never presented in this session")
            if qid in seen:
                raise UnknownQuestionError(qid, "submitted more than once")
            seen.add(qid)

        items = {item.question_id: item for item in self.repository.find_by_ids(list(seen))}
        for qid in seen:
            if qid not in items:
                raise UnknownQuestionError(qid, "not found in the question bank")
        return items

    def _apply_response(
        self,
        state: SessionState,
        tracker: ConfidenceTracker,
        item: Item,
        response: SubmittedResponse,
    ) -> None:
        dimensions = tuple(DimensionMapper.get_dimensions(item))
        answered_at = utc_now()
        for dimension in dimensions:
            tracker.update_confidence(
                dimension,
                DimensionResponse(
                    question_id=item.question_id,
                    score=response.score,
                    timestamp=answered_at,
                    discrimination_index=item.discrimination_index,
                    response_time_ms=response.response_time_ms,
                ),
            )
        state.responses.append(
            ResponseRecord.from_item(
                item,
                score=response.score,
                dimensions=dimensions,
                raw_score=response.raw_score,
                response_time_ms=response.response_time_ms,
                answered_at=answered_at,
            )
        )

    def _pending_result(
        self, state: SessionState, tracker: ConfidenceTracker, pending_ids: List[str]
    ) -> NextQuestionsResult:
        questions = self.repository.find_by_ids(pending_ids)
        return NextQuestionsResult(
            questions=questions,
            stage=state.current_stage,
            stage_changed=False,
            stage_message=self.coordinator.get_stage_message(state.current_stage),
            progress_message=self.coordinator.get_progress_message(tracker, state.answered_count),
            confidence_summary=tracker.get_summary(),
            skip_notifications=self.coordinator.get_skip_notifications(tracker),
        )

    def _step(
        self,
        state: SessionState,
        result: NextQuestionsResult,
        answered: Optional[List[str]] = None,
    ) -> AssessmentStep:
        return AssessmentStep(
            session_id=state.session_id,
            result=result,
            progress=self.coordinator.get_progress(state),
            is_complete=state.is_completed,
            answered=answered or [],
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_confidence_report(self, session_id: str) -> Dict[str, Any]:
        state = self.store.load(session_id)
        tracker = ConfidenceTracker.from_snapshot(state.confidence_state)
        summary = tracker.get_summary()
        return {
            "session_id": session_id,
            "stage": state.current_stage,
            "confidence_summary": summary,
            "big_five_average": average_big_five_confidence(summary),
            "ready_for_report": tracker.is_ready_for_report(),
            "skippable_dimensions": [
                entry["dimension"]
                for entry in tracker.get_skippable_dimensions(
                    self.config.skip_confidence, self.config.skip_min_questions
                )
            ],
            "stage_history": self.coordinator.get_stage_statistics(state)["stage_history"],
        }

    def get_dimension_stats(self, session_id: str, dimension: str) -> Optional[Dict[str, Any]]:
        """Detailed statistics for one dimension; None when it has no responses."""
        state = self.store.load(session_id)
        tracker = ConfidenceTracker.from_snapshot(state.confidence_state)
        stats = tracker.get_dimension_stats(dimension.lower())
        if stats is not None:
            stats["display_name"] = DimensionMapper.display_name(dimension)
        return stats

    def get_progress(self, session_id: str) -> Dict[str, Any]:
        state = self.store.load(session_id)
        progress = self.coordinator.get_progress(state)
        progress["stage_statistics"] = self.coordinator.get_stage_statistics(state)
        return progress
