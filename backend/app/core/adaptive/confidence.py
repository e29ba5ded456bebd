"""
Per-dimension confidence tracking.

The tracker accumulates normalized (0-100) response scores per dimension and
derives a 0-100 confidence for each from four components:

    base            min(count * 10, 50)
    consistency     (1 - min(variance / 6, 1)) * 25
    discrimination  mean item discrimination (0.7 when unknown) * 15
    quality         response-time quality (0-1) * 10

It holds no state across requests: ``from_snapshot`` rebuilds it from the
session's persisted snapshot, the request mutates it, and ``to_snapshot``
produces the new snapshot to save.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from app.core.adaptive.dimensions import BIG_FIVE_TRAITS, Dimension
from app.core.datetime_utils import parse_datetime, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DISCRIMINATION = 0.7

# Response-time quality thresholds
RAPID_RESPONSE_MS = 2000
RAPID_RESPONSE_MAX_PENALTY = 0.3
STRAIGHTLINE_VARIANCE_MS2 = 250_000
STRAIGHTLINE_MIN_TIMED = 3
STRAIGHTLINE_PENALTY = 0.2

REPORT_READY_CONFIDENCE = 75.0

# Dimensions considered when ranking what still needs questions
PRIORITY_DIMENSIONS = (
    *BIG_FIVE_TRAITS,
    "depression",
    "anxiety",
    "mania",
    "psychosis",
    "adhd",
    "autism",
    "executive_function",
    "sensory_processing",
)

# stage -> (min questions, target confidence)
STAGE_PRIORITY_THRESHOLDS = {
    1: (1, 30.0),
    2: (2, 75.0),
    3: (3, 85.0),
    4: (2, 90.0),
}


def clamp_confidence(value: Any) -> float:
    """Coerce a possibly-malformed confidence into [0, 100]; NaN becomes 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


def population_variance(values: List[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


@dataclass
class DimensionResponse:
    """One response as recorded against a dimension."""

    question_id: str
    score: float
    timestamp: datetime
    discrimination_index: Optional[float] = None
    response_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "score": self.score,
            "timestamp": self.timestamp.isoformat(),
            "discrimination_index": self.discrimination_index,
            "response_time_ms": self.response_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DimensionResponse":
        return cls(
            question_id=str(data.get("question_id", "")),
            score=float(data.get("score", 0.0)),
            timestamp=parse_datetime(data.get("timestamp")),
            discrimination_index=data.get("discrimination_index"),
            response_time_ms=data.get("response_time_ms"),
        )


@dataclass
class DimensionState:
    """Running score and confidence for one dimension."""

    score: float = 0.0
    confidence: float = 0.0
    responses: List[DimensionResponse] = field(default_factory=list)

    @property
    def question_count(self) -> int:
        return len(self.responses)

    def scores(self) -> List[float]:
        return [r.score for r in self.responses]


class ConfidenceTracker:
    """Accumulates responses per dimension and computes confidence."""

    def __init__(self) -> None:
        self.dimensions: Dict[str, DimensionState] = {}

    def update_confidence(
        self, dimension: Union[str, Dimension], response: DimensionResponse
    ) -> DimensionState:
        """
        Record a response and recompute the dimension's score and confidence.

        Args:
            dimension: Dimension key (e.g. "openness_ideas") or typed dimension.
            response: The answer, with its 0-100 score and optional timing.

        Returns:
            The updated state for the dimension.
        """
        key = dimension if isinstance(dimension, str) else dimension.key
        state = self.dimensions.setdefault(key, DimensionState())
        state.responses.append(response)
        state.score = sum(state.scores()) / state.question_count
        state.confidence = self.calculate_confidence(state.responses)
        return state

    def get(self, dimension: str) -> Optional[DimensionState]:
        return self.dimensions.get(dimension)

    def score_of(self, dimension: str, default: float = 0.0) -> float:
        state = self.dimensions.get(dimension)
        return state.score if state is not None else default

    # ------------------------------------------------------------------
    # Confidence formula
    # ------------------------------------------------------------------

    @classmethod
    def calculate_confidence(cls, responses: List[DimensionResponse]) -> float:
        count = len(responses)
        base = min(count * 10, 50)
        variance = population_variance([r.score for r in responses])
        consistency = (1 - min(variance / 6, 1)) * 25
        discrimination = cls.average_discrimination(responses) * 15
        quality = cls.response_quality(responses) * 10
        return clamp_confidence(base + consistency + discrimination + quality)

    @staticmethod
    def average_discrimination(responses: List[DimensionResponse]) -> float:
        known = [
            r.discrimination_index for r in responses if r.discrimination_index is not None
        ]
        if not known:
            return DEFAULT_DISCRIMINATION
        return max(0.0, min(1.0, sum(known) / len(known)))

    @staticmethod
    def response_quality(responses: List[DimensionResponse]) -> float:
        """
        1.0 for normal pacing; penalized for rapid responses and for
        suspiciously uniform response times (straight-lining).
        """
        times = [
            r.response_time_ms
            for r in responses
            if r.response_time_ms is not None and r.response_time_ms > 0
        ]
        if not times:
            return 1.0

        quality = 1.0
        rapid = sum(1 for t in times if t < RAPID_RESPONSE_MS)
        quality -= (rapid / len(times)) * RAPID_RESPONSE_MAX_PENALTY

        if (
            len(times) >= STRAIGHTLINE_MIN_TIMED
            and population_variance(times) < STRAIGHTLINE_VARIANCE_MS2
        ):
            quality -= STRAIGHTLINE_PENALTY

        return max(0.0, min(1.0, quality))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def needs_more_questions(
        self, dimension: str, min_questions: int = 2, target_confidence: float = 85.0
    ) -> bool:
        state = self.dimensions.get(dimension)
        if state is None:
            return True
        return state.question_count < min_questions or state.confidence < target_confidence

    def get_priority_dimensions(self, stage: int) -> List[Dict[str, Any]]:
        """
        Dimensions still below the stage's bar, largest confidence gap first.

        Args:
            stage: Stage number (1-4); selects the (min questions, target
                confidence) bar. Unknown stages use the Stage 1 bar.

        Returns:
            Dicts with ``dimension``, ``confidence``, ``question_count`` and
            ``gap`` (target minus current confidence).
        """
        min_questions, target = STAGE_PRIORITY_THRESHOLDS.get(
            stage, STAGE_PRIORITY_THRESHOLDS[1]
        )
        priorities = []
        for dimension in PRIORITY_DIMENSIONS:
            if not self.needs_more_questions(dimension, min_questions, target):
                continue
            state = self.dimensions.get(dimension) or DimensionState()
            priorities.append(
                {
                    "dimension": dimension,
                    "confidence": state.confidence,
                    "question_count": state.question_count,
                    "score": state.score,
                    "gap": target - state.confidence,
                }
            )
        return sorted(priorities, key=lambda p: -p["gap"])

    def get_skippable_dimensions(
        self, threshold: float = 85.0, min_questions: int = 2
    ) -> List[Dict[str, Any]]:
        return [
            {
                "dimension": dimension,
                "confidence": state.confidence,
                "question_count": state.question_count,
            }
            for dimension, state in self.dimensions.items()
            if state.confidence >= threshold and state.question_count >= min_questions
        ]

    def get_average_confidence(self) -> float:
        """Mean confidence over the Big Five traits that have data."""
        present = [
            self.dimensions[trait].confidence
            for trait in BIG_FIVE_TRAITS
            if trait in self.dimensions
        ]
        return sum(present) / len(present) if present else 0.0

    def is_ready_for_report(self) -> bool:
        return all(
            trait in self.dimensions
            and self.dimensions[trait].confidence >= REPORT_READY_CONFIDENCE
            for trait in BIG_FIVE_TRAITS
        )

    def get_summary(self) -> Dict[str, Dict[str, int]]:
        return {
            dimension: {
                "score": round(state.score),
                "confidence": round(state.confidence),
                "question_count": state.question_count,
            }
            for dimension, state in self.dimensions.items()
        }

    def get_dimension_stats(self, dimension: str) -> Optional[Dict[str, Any]]:
        """Detailed statistics for one dimension, or None when it has no data."""
        state = self.dimensions.get(dimension)
        if state is None:
            return None
        scores = state.scores()
        variance = population_variance(scores)
        return {
            "dimension": dimension,
            "score": round(state.score),
            "confidence": round(state.confidence),
            "question_count": state.question_count,
            "variance": round(variance, 2),
            "standard_deviation": round(math.sqrt(variance), 2),
            "score_range": {"min": min(scores), "max": max(scores)},
            "response_timeline": [
                {
                    "question_id": r.question_id,
                    "score": r.score,
                    "timestamp": r.timestamp,
                }
                for r in state.responses
            ],
        }

    # ------------------------------------------------------------------
    # Snapshot round-trip
    # ------------------------------------------------------------------

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "dimensions": {
                dimension: {
                    "score": state.score,
                    "confidence": state.confidence,
                    "question_count": state.question_count,
                    "responses": [r.to_dict() for r in state.responses],
                }
                for dimension, state in self.dimensions.items()
            },
            "timestamp": utc_now().isoformat(),
        }

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Mapping[str, Any]]) -> "ConfidenceTracker":
        """
        Rebuild a tracker from a persisted snapshot.

        Persisted confidence is clamped into [0, 100]; a malformed dimension
        entry is dropped with a warning rather than failing the request.

        Args:
            snapshot: Output of ``to_snapshot``, or None for a new session.

        Returns:
            A tracker holding the persisted responses.
        """
        tracker = cls()
        if not snapshot:
            return tracker
        for dimension, data in (snapshot.get("dimensions") or {}).items():
            try:
                responses = [
                    DimensionResponse.from_dict(r) for r in data.get("responses", [])
                ]
                score = float(data.get("score", 0.0))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed confidence state for {dimension}: {e}")
                continue
            if math.isnan(score):
                score = 0.0
            tracker.dimensions[dimension] = DimensionState(
                score=score,
                confidence=clamp_confidence(data.get("confidence", 0.0)),
                responses=responses,
            )
        return tracker
