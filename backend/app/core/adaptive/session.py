"""
Plain session snapshot passed between the store, the service and the engine.

``SessionState`` is what a request loads, mutates and saves. It holds no ORM
objects so the engine and simulations can run without a database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.core.adaptive.repository import Item
from app.core.datetime_utils import parse_datetime, utc_now

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"

# Native maximum of instruments whose gates read raw scores
RAW_SCALE_MAX = {"PHQ-9": 3, "GAD-7": 3}
# PHQ-2 / GAD-2 items are 0-3; used when a screener has no known instrument
DEFAULT_SCREEN_RAW_MAX = 3


@dataclass
class ResponseRecord:
    """
    One answered item.

    ``score`` is normalized to 0-100 and feeds the confidence tracker.
    ``raw_score`` is the instrument-native value (e.g. PHQ items 0-3) used by
    clinical screening gates. ``dimensions`` is computed once when the answer is
    recorded and never recomputed. Item metadata is copied in so selectors can
    reason about history without re-querying the bank.
    """

    question_id: str
    score: float
    dimensions: Tuple[str, ...]
    category: str
    answered_at: datetime = field(default_factory=utc_now)
    raw_score: Optional[float] = None
    response_time_ms: Optional[float] = None
    subcategory: Optional[str] = None
    trait: Optional[str] = None
    facet: Optional[str] = None
    instrument: Optional[str] = None
    tags: Tuple[str, ...] = ()
    discrimination_index: Optional[float] = None

    @property
    def screening_score(self) -> float:
        """
        Score on the instrument's native scale.

        Falls back to converting the normalized 0-100 ``score`` back to that
        scale when the client did not send a raw score.
        """
        if self.raw_score is not None:
            return self.raw_score
        raw_max = RAW_SCALE_MAX.get(self.instrument or "", DEFAULT_SCREEN_RAW_MAX)
        return self.score / 100 * raw_max

    def has_tag(self, tag: str) -> bool:
        tag = tag.lower()
        return any(t.lower() == tag for t in self.tags)

    @classmethod
    def from_item(
        cls,
        item: Item,
        score: float,
        dimensions: Tuple[str, ...],
        raw_score: Optional[float] = None,
        response_time_ms: Optional[float] = None,
        answered_at: Optional[datetime] = None,
    ) -> "ResponseRecord":
        return cls(
            question_id=item.question_id,
            score=score,
            dimensions=dimensions,
            category=item.category,
            answered_at=answered_at or utc_now(),
            raw_score=raw_score,
            response_time_ms=response_time_ms,
            subcategory=item.subcategory,
            trait=item.trait,
            facet=item.facet,
            instrument=item.instrument,
            tags=tuple(item.tags),
            discrimination_index=item.discrimination_index,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "score": self.score,
            "raw_score": self.raw_score,
            "response_time_ms": self.response_time_ms,
            "dimensions": list(self.dimensions),
            "category": self.category,
            "subcategory": self.subcategory,
            "trait": self.trait,
            "facet": self.facet,
            "instrument": self.instrument,
            "tags": list(self.tags),
            "discrimination_index": self.discrimination_index,
            "answered_at": self.answered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponseRecord":
        return cls(
            question_id=data["question_id"],
            score=float(data["score"]),
            dimensions=tuple(data.get("dimensions") or ()),
            category=data.get("category") or "",
            answered_at=parse_datetime(data.get("answered_at")),
            raw_score=data.get("raw_score"),
            response_time_ms=data.get("response_time_ms"),
            subcategory=data.get("subcategory"),
            trait=data.get("trait"),
            facet=data.get("facet"),
            instrument=data.get("instrument"),
            tags=tuple(data.get("tags") or ()),
            discrimination_index=data.get("discrimination_index"),
        )


@dataclass
class StageHistoryEntry:
    """Recorded when a session leaves ``stage``."""

    stage: int
    completed_at: datetime
    questions_asked: int
    confidence_summary: Dict[str, Dict[str, int]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "completed_at": self.completed_at.isoformat(),
            "questions_asked": self.questions_asked,
            "confidence_summary": self.confidence_summary,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StageHistoryEntry":
        return cls(
            stage=int(data["stage"]),
            completed_at=parse_datetime(data.get("completed_at")),
            questions_asked=int(data.get("questions_asked", 0)),
            confidence_summary=dict(data.get("confidence_summary") or {}),
        )


@dataclass
class SessionState:
    """Snapshot of one adaptive assessment session."""

    session_id: str
    target_total: int = 70
    current_stage: int = 1
    responses: List[ResponseRecord] = field(default_factory=list)
    presented_question_ids: List[str] = field(default_factory=list)
    confidence_state: Dict[str, Any] = field(default_factory=dict)
    stage_history: List[StageHistoryEntry] = field(default_factory=list)
    status: str = STATUS_IN_PROGRESS
    # Optimistic concurrency token; stores reject a save whose version is stale
    version: int = 0

    @property
    def answered_count(self) -> int:
        return len(self.responses)

    @property
    def answered_ids(self) -> List[str]:
        return [r.question_id for r in self.responses]

    def excluded_ids(self) -> frozenset:
        """Every id that must never be presented again."""
        return frozenset(self.presented_question_ids) | frozenset(self.answered_ids)

    def pending_question_ids(self) -> List[str]:
        """Presented ids that have not been answered yet, in presentation order."""
        answered = set(self.answered_ids)
        return [qid for qid in self.presented_question_ids if qid not in answered]

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED
