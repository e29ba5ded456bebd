"""
Multi-stage adaptive item selection for the psychometric assessment.

A session administers exactly ``target_total`` items (70 by default) across
four stages: broad screening, targeted building, precision refinement and
gap filling. Per-dimension confidence decides when a stage is done.
"""

from .confidence import ConfidenceTracker, DimensionResponse, DimensionState
from .config import (
    AdaptiveEngineConfig,
    StageAdvancement,
    StageBatchLimits,
)
from .coordinator import (
    MultiStageCoordinator,
    NextQuestionsResult,
    SkipNotification,
)
from .dimensions import (
    BigFive,
    Clinical,
    Dimension,
    DimensionMapper,
    Facet,
    Neurodiversity,
    Other,
    parse_dimension,
)
from .errors import (
    AdaptiveEngineError,
    InvalidStageError,
    QuestionPoolExhaustedError,
    QuestionRepositoryUnavailableError,
    SessionCompleteError,
    SessionConflictError,
    SessionError,
    SessionNotFoundError,
    UnknownQuestionError,
)
from .facet_intelligence import (
    PersonalityProfile,
    prioritize_facets,
    recommended_facet_count,
)
from .repository import (
    InMemoryQuestionRepository,
    Item,
    ItemQuery,
    ItemSort,
    QuestionRepository,
)
from .service import AdaptiveAssessmentService, AssessmentStep, SubmittedResponse
from .session import ResponseRecord, SessionState, StageHistoryEntry
from .session_store import InMemorySessionStore, SessionStore

__all__ = [
    "AdaptiveEngineConfig",
    "StageAdvancement",
    "StageBatchLimits",
    "ConfidenceTracker",
    "DimensionResponse",
    "DimensionState",
    "MultiStageCoordinator",
    "NextQuestionsResult",
    "SkipNotification",
    "BigFive",
    "Clinical",
    "Dimension",
    "DimensionMapper",
    "Facet",
    "Neurodiversity",
    "Other",
    "parse_dimension",
    "AdaptiveEngineError",
    "InvalidStageError",
    "QuestionPoolExhaustedError",
    "QuestionRepositoryUnavailableError",
    "SessionCompleteError",
    "SessionConflictError",
    "SessionError",
    "SessionNotFoundError",
    "UnknownQuestionError",
    "PersonalityProfile",
    "prioritize_facets",
    "recommended_facet_count",
    "InMemoryQuestionRepository",
    "Item",
    "ItemQuery",
    "ItemSort",
    "QuestionRepository",
    "AdaptiveAssessmentService",
    "AssessmentStep",
    "SubmittedResponse",
    "ResponseRecord",
    "SessionState",
    "StageHistoryEntry",
    "InMemorySessionStore",
    "SessionStore",
]
