"""
Standardized error response messages and builders.

Route handlers raise ``HTTPException`` through the ``raise_*`` helpers with
messages from ``ErrorMessages``. Engine errors (``app.core.adaptive.errors``)
are not raised as HTTP errors; ``engine_error_response`` maps them to a status
code and a user-facing message and is used by the exception handler in
``app.main``.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Include relevant IDs in parentheses when helpful for debugging: "(ID: abc)"
- Use "Please try again later." for transient server errors
- Never include internal details (SQL, stack traces) in messages

Usage:
    from app.core.error_responses import ErrorMessages, raise_not_found

    if stats is None:
        raise_not_found(ErrorMessages.dimension_not_found(name))
"""

from typing import NoReturn, Optional, Tuple

from fastapi import HTTPException, status

from app.core.adaptive.errors import (
    AdaptiveEngineError,
    InvalidStageError,
    QuestionPoolExhaustedError,
    QuestionRepositoryUnavailableError,
    SessionCompleteError,
    SessionConflictError,
    SessionNotFoundError,
    UnknownQuestionError,
)


class ErrorMessages:
    """Centralized error message constants and templates."""

    # ==========================================================================
    # Conflict Errors (409)
    # ==========================================================================
    SESSION_MODIFIED_CONCURRENTLY = (
        "This assessment session was updated by another request. "
        "Please reload the session and try again."
    )

    # ==========================================================================
    # Bad Request Errors (400)
    # ==========================================================================
    SESSION_ALREADY_COMPLETE = "This assessment is already complete."

    # ==========================================================================
    # Server Errors (500 / 503)
    # ==========================================================================
    QUESTION_BANK_UNAVAILABLE = (
        "The question bank is temporarily unavailable. Please try again later."
    )
    QUESTION_POOL_EXHAUSTED = (
        "The assessment cannot be completed because the question bank is too small. "
        "Please contact support."
    )
    INVALID_SESSION_STAGE = "The assessment session is in an invalid state."
    ASSESSMENT_FAILED = "Failed to process the assessment. Please try again later."

    # ==========================================================================
    # Template Methods for Dynamic Messages
    # ==========================================================================
    @staticmethod
    def session_not_found(session_id: str) -> str:
        return f"Assessment session not found (ID: {session_id})."

    @staticmethod
    def invalid_response(question_id: str, reason: str) -> str:
        """Message when a submitted answer cannot be accepted."""
        return f"Invalid response for question {question_id}: {reason}."

    @staticmethod
    def dimension_not_found(dimension: str) -> str:
        return f"No responses recorded for dimension '{dimension}'."


def engine_error_response(error: AdaptiveEngineError) -> Tuple[int, str]:
    """Status code and user-facing message for an engine error."""
    if isinstance(error, SessionNotFoundError):
        return status.HTTP_404_NOT_FOUND, ErrorMessages.session_not_found(error.session_id)
    if isinstance(error, SessionConflictError):
        return status.HTTP_409_CONFLICT, ErrorMessages.SESSION_MODIFIED_CONCURRENTLY
    if isinstance(error, SessionCompleteError):
        return status.HTTP_400_BAD_REQUEST, ErrorMessages.SESSION_ALREADY_COMPLETE
    if isinstance(error, UnknownQuestionError):
        return status.HTTP_400_BAD_REQUEST, ErrorMessages.invalid_response(
            error.question_id, error.reason
        )
    if isinstance(error, QuestionRepositoryUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE, ErrorMessages.QUESTION_BANK_UNAVAILABLE
    if isinstance(error, QuestionPoolExhaustedError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorMessages.QUESTION_POOL_EXHAUSTED
    if isinstance(error, InvalidStageError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorMessages.INVALID_SESSION_STAGE
    return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorMessages.ASSESSMENT_FAILED


# ==============================================================================
# HTTPException Builder Functions
# ==============================================================================


def raise_not_found(detail: str) -> NoReturn:
    """Raise a 404 Not Found exception.

    Use when a requested resource doesn't exist.

    Args:
        detail: User-facing error message

    Raises:
        HTTPException: 404 Not Found
    """
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def raise_server_error(
    detail: str,
    error_id: Optional[str] = None,
) -> NoReturn:
    """Raise a 500 Internal Server Error exception.

    Log technical details separately; ``detail`` stays generic.

    Args:
        detail: User-facing error message
        error_id: Optional error tracking ID (e.g. the request id) for support

    Raises:
        HTTPException: 500 Internal Server Error
    """
    if error_id:
        detail = f"{detail} (Error ID: {error_id})"

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )
