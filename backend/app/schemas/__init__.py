"""
Pydantic schemas for request/response validation.
"""
from .adaptive import (
    AssessmentStepResponse,
    ConfidenceReportResponse,
    DimensionStatsResponse,
    NextQuestionsRequest,
    ProgressResponse,
    QuestionOut,
    ResponseIn,
    StartAssessmentRequest,
)

__all__ = [
    "AssessmentStepResponse",
    "ConfidenceReportResponse",
    "DimensionStatsResponse",
    "NextQuestionsRequest",
    "ProgressResponse",
    "QuestionOut",
    "ResponseIn",
    "StartAssessmentRequest",
]
