"""
Models package for the adaptive assessment backend.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    Question,
    AssessmentSession,
    SessionStatus,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "Question",
    "AssessmentSession",
    "SessionStatus",
]
