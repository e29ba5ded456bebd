"""
Exceptions raised by the adaptive assessment engine.

Engine code raises these domain errors; the HTTP layer translates them into
responses (see ``app.main``). None of them carries HTTP semantics itself so
the engine can run from scripts and simulations.
"""

from typing import Optional


class AdaptiveEngineError(Exception):
    """Base class for all adaptive engine failures."""


class QuestionRepositoryUnavailableError(AdaptiveEngineError):
    """The question repository could not be queried (transient).

    Selection is aborted as a whole so no partial session state is written.
    """

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        self.operation = operation
        self.original_error = original_error
        message = f"Question repository unavailable during {operation}"
        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(message)


class QuestionPoolExhaustedError(AdaptiveEngineError):
    """The active question pool cannot supply enough items to reach the target total."""

    def __init__(self, answered: int, target_total: int, available: int):
        self.answered = answered
        self.target_total = target_total
        self.available = available
        super().__init__(
            f"Question pool exhausted: {answered} answered, {available} unused "
            f"active items, target total {target_total}"
        )


class InvalidStageError(AdaptiveEngineError):
    """A stage number outside 1-4 was requested."""

    def __init__(self, stage: int):
        self.stage = stage
        super().__init__(f"Invalid stage: {stage}")


class SessionError(AdaptiveEngineError):
    """Base class for session lifecycle failures."""


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Assessment session not found: {session_id}")


class SessionConflictError(SessionError):
    """Another request saved the session first (optimistic version check failed)."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Assessment session {session_id} was modified concurrently")


class SessionCompleteError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Assessment session {session_id} is already complete")


class UnknownQuestionError(AdaptiveEngineError):
    """A submitted response references a question that was never presented or was already answered."""

    def __init__(self, question_id: str, reason: str):
        self.question_id = question_id
        self.reason = reason
        super().__init__(f"Invalid response for question {question_id}: {reason}")
