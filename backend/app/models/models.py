"""
Database models for the adaptive assessment service.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
)

from .base import Base


class SessionStatus(str, enum.Enum):
    """Assessment session status enumeration."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Question(Base):
    """Question bank item."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(String(100), unique=True, nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    category = Column(String(64), nullable=False, index=True)
    subcategory = Column(String(64), nullable=True)
    trait = Column(String(64), nullable=True, index=True)
    facet = Column(String(64), nullable=True)
    instrument = Column(String(64), nullable=True, index=True)
    tags = Column(JSON, nullable=False, default=list)
    # Item quality (0-1); items without one sort last
    discrimination_index = Column(Float, nullable=True)
    difficulty = Column(Float, nullable=True)
    reverse_scored = Column(Boolean, default=False, nullable=False)
    # Inconsistency validity pairs share a pair number (e.g. VALIDITY_INCONS_3A/3B)
    pair_number = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_questions_category_active", "category", "is_active"),
    )


class AssessmentSession(Base):
    """Adaptive assessment session snapshot."""

    __tablename__ = "assessment_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    current_stage = Column(Integer, default=1, nullable=False)
    target_total = Column(Integer, default=70, nullable=False)
    status = Column(
        Enum(SessionStatus), default=SessionStatus.IN_PROGRESS, nullable=False, index=True
    )
    # Serialized ConfidenceTracker snapshot
    confidence_state = Column(JSON, nullable=False, default=dict)
    stage_history = Column(JSON, nullable=False, default=list)
    responses = Column(JSON, nullable=False, default=list)
    presented_question_ids = Column(JSON, nullable=False, default=list)
    started_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Optimistic concurrency: UPDATE ... WHERE version = <loaded version>
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
