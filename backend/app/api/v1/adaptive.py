"""
Adaptive assessment endpoints.

Each request is one load -> engine -> save cycle inside a single database
transaction. Engine errors propagate to the handlers in ``app.main`` and the
transaction is rolled back, so a failed request never leaves a partial
session write behind.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.adaptive.config import AdaptiveEngineConfig
from app.core.adaptive.question_pool import QuestionPoolCache, SqlQuestionRepository
from app.core.adaptive.service import AdaptiveAssessmentService, SubmittedResponse
from app.core.adaptive.session_store import SqlSessionStore
from app.core.error_responses import ErrorMessages, raise_not_found, raise_server_error
from app.core.logging_config import request_id_context
from app.models import get_db
from app.schemas.adaptive import (
    AssessmentStepResponse,
    ConfidenceReportResponse,
    DimensionStatsResponse,
    NextQuestionsRequest,
    ProgressResponse,
    StartAssessmentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_engine_config(request: Request) -> AdaptiveEngineConfig:
    return request.app.state.engine_config


def get_question_pool_cache(request: Request) -> QuestionPoolCache:
    return request.app.state.question_pool_cache


def get_assessment_service(
    db: Session = Depends(get_db),
    config: AdaptiveEngineConfig = Depends(get_engine_config),
    pool_cache: QuestionPoolCache = Depends(get_question_pool_cache),
) -> AdaptiveAssessmentService:
    return AdaptiveAssessmentService(
        repository=SqlQuestionRepository(db, pool_cache),
        store=SqlSessionStore(db),
        config=config,
    )


def _commit(db: Session, session_id: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Failed to commit assessment session: {e}",
            extra={"session_id": session_id},
        )
        raise_server_error(
            ErrorMessages.ASSESSMENT_FAILED, error_id=request_id_context.get()
        )


@router.post("/start", response_model=AssessmentStepResponse)
def start_assessment(
    payload: Optional[StartAssessmentRequest] = None,
    service: AdaptiveAssessmentService = Depends(get_assessment_service),
    db: Session = Depends(get_db),
):
    """
    Start a new adaptive assessment.

    Returns the first Stage 1 (broad screening) batch together with the
    session id the client uses for every following request.
    """
    step = service.start_session(payload.session_id if payload else None)
    _commit(db, step.session_id)
    return AssessmentStepResponse.from_step(step)


@router.post("/next", response_model=AssessmentStepResponse)
def next_questions(
    payload: NextQuestionsRequest,
    service: AdaptiveAssessmentService = Depends(get_assessment_service),
    db: Session = Depends(get_db),
):
    """
    Submit answers and get the next batch.

    Answers may cover part of the last batch; the unanswered remainder is
    returned again until the batch is complete. When the final answer is
    recorded ``is_complete`` is true and ``questions`` is empty.
    """
    step = service.submit_responses(
        payload.session_id,
        [
            SubmittedResponse(
                question_id=r.question_id,
                score=r.score,
                raw_score=r.raw_score,
                response_time_ms=r.response_time_ms,
            )
            for r in payload.responses
        ],
    )
    _commit(db, step.session_id)
    return AssessmentStepResponse.from_step(step)


@router.get("/{session_id}/confidence", response_model=ConfidenceReportResponse)
def get_confidence(
    session_id: str,
    service: AdaptiveAssessmentService = Depends(get_assessment_service),
):
    """Confidence summary, Big Five average, report readiness and stage history."""
    return service.get_confidence_report(session_id)


@router.get("/{session_id}/dimension/{dimension}", response_model=DimensionStatsResponse)
def get_dimension(
    session_id: str,
    dimension: str,
    service: AdaptiveAssessmentService = Depends(get_assessment_service),
):
    """Detailed statistics for one dimension (404 when it has no responses)."""
    stats = service.get_dimension_stats(session_id, dimension)
    if stats is None:
        raise_not_found(ErrorMessages.dimension_not_found(dimension))
    return stats


@router.get("/{session_id}/progress", response_model=ProgressResponse)
def get_progress(
    session_id: str,
    service: AdaptiveAssessmentService = Depends(get_assessment_service),
):
    """Answered/total counts, current stage and per-stage statistics."""
    return service.get_progress(session_id)
