"""
Pydantic schemas for adaptive assessment endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from typing_extensions import Self

from app.core.adaptive.coordinator import NextQuestionsResult
from app.core.adaptive.repository import Item
from app.core.adaptive.service import AssessmentStep


class QuestionOut(BaseModel):
    """A question as presented to the respondent."""

    question_id: str = Field(..., description="Stable question identifier")
    text: str = Field(..., description="Question text")
    category: str = Field(..., description="Question category (personality, validity, ...)")
    subcategory: Optional[str] = Field(None, description="Question subcategory")
    trait: Optional[str] = Field(None, description="Big Five trait, for personality items")
    facet: Optional[str] = Field(None, description="Trait facet, for personality items")
    instrument: Optional[str] = Field(None, description="Source instrument (e.g. PHQ-9)")
    reverse_scored: bool = Field(False, description="Whether the item is reverse scored")

    @classmethod
    def from_item(cls, item: Item) -> "QuestionOut":
        return cls(
            question_id=item.question_id,
            text=item.text,
            category=item.category,
            subcategory=item.subcategory,
            trait=item.trait,
            facet=item.facet,
            instrument=item.instrument,
            reverse_scored=item.reverse_scored,
        )


class DimensionSummary(BaseModel):
    score: int = Field(..., ge=0, le=100, description="Rounded running score (0-100)")
    confidence: int = Field(..., ge=0, le=100, description="Rounded confidence (0-100)")
    question_count: int = Field(..., ge=0, description="Responses recorded for the dimension")


class SkipNotificationOut(BaseModel):
    type: str = Field("skip", description="Notification type")
    dimension: str = Field(..., description="Dimension that no longer needs questions")
    confidence: float = Field(..., description="Confidence that triggered the skip")
    message: str = Field(..., description="Human readable notification")


class ProgressOut(BaseModel):
    current: int = Field(..., description="Questions answered so far")
    total: int = Field(..., description="Target total number of questions")
    percentage: int = Field(..., description="Rounded completion percentage")
    remaining: int = Field(..., description="Questions left to answer")
    stage: int = Field(..., ge=1, le=4, description="Current stage (1-4)")
    complete: bool = Field(..., description="Whether the assessment is complete")


class AssessmentStepResponse(BaseModel):
    """Next batch of questions plus the engine's view of the session."""

    session_id: str = Field(..., description="Adaptive session identifier")
    questions: List[QuestionOut] = Field(..., description="Questions to present next")
    stage: int = Field(..., ge=1, le=4, description="Stage that selected the questions")
    stage_changed: bool = Field(..., description="Whether this request advanced the stage")
    stage_message: str = Field(..., description="Stage banner text")
    progress_message: str = Field(..., description="Progress text for the respondent")
    confidence_summary: Dict[str, DimensionSummary] = Field(
        default_factory=dict, description="Per-dimension score/confidence/count"
    )
    skip_notifications: List[SkipNotificationOut] = Field(default_factory=list)
    progress: ProgressOut
    is_complete: bool = Field(False, description="Whether the assessment is complete")

    @classmethod
    def from_step(cls, step: AssessmentStep) -> "AssessmentStepResponse":
        result: NextQuestionsResult = step.result
        return cls(
            session_id=step.session_id,
            questions=[QuestionOut.from_item(item) for item in result.questions],
            stage=result.stage,
            stage_changed=result.stage_changed,
            stage_message=result.stage_message,
            progress_message=result.progress_message,
            confidence_summary=result.confidence_summary,
            skip_notifications=[n.to_dict() for n in result.skip_notifications],
            progress=step.progress,
            is_complete=step.is_complete,
        )


class ResponseIn(BaseModel):
    """One answered question."""

    question_id: str = Field(..., min_length=1, max_length=100, description="Question answered")
    score: float = Field(..., ge=0, le=100, description="Answer normalized to 0-100")
    raw_score: Optional[float] = Field(
        None, ge=0, description="Instrument-native score (e.g. PHQ-9 items 0-3)"
    )
    response_time_ms: Optional[float] = Field(
        None, ge=0, description="Time taken to answer, in milliseconds"
    )

    @field_validator("question_id")
    @classmethod
    def strip_question_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Question ID cannot be blank")
        return v


class StartAssessmentRequest(BaseModel):
    session_id: Optional[str] = Field(
        None,
        min_length=8,
        max_length=64,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Optional client-chosen session id (generated when omitted)",
    )


class NextQuestionsRequest(BaseModel):
    """Answers to (part of) the last batch."""

    session_id: str = Field(..., min_length=1, max_length=64, description="Adaptive session id")
    responses: List[ResponseIn] = Field(
        ..., min_length=1, max_length=100, description="Answers being submitted"
    )

    @model_validator(mode="after")
    def validate_unique_questions(self) -> Self:
        ids = [r.question_id for r in self.responses]
        duplicates = sorted({qid for qid in ids if ids.count(qid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate responses for questions: {', '.join(duplicates)}")
        return self


class StageHistoryOut(BaseModel):
    stage: int
    questions_asked: int
    completed_at: datetime
    avg_confidence: int


class ConfidenceReportResponse(BaseModel):
    session_id: str
    stage: int
    confidence_summary: Dict[str, DimensionSummary]
    big_five_average: int = Field(..., description="Rounded mean Big Five confidence")
    ready_for_report: bool = Field(
        ..., description="All Big Five traits at or above the report confidence"
    )
    skippable_dimensions: List[str]
    stage_history: List[StageHistoryOut]


class ScoreRange(BaseModel):
    min: float
    max: float


class TimelineEntry(BaseModel):
    question_id: str
    score: float
    timestamp: datetime


class DimensionStatsResponse(BaseModel):
    dimension: str
    display_name: str
    score: int
    confidence: int
    question_count: int
    variance: float
    standard_deviation: float
    score_range: ScoreRange
    response_timeline: List[TimelineEntry]


class StageStatisticsOut(BaseModel):
    current_stage: int
    stages_completed: int
    stage_history: List[StageHistoryOut]


class ProgressResponse(ProgressOut):
    stage_statistics: StageStatisticsOut
