"""
Tests for the engine error to HTTP response mapping.
"""
import pytest
from fastapi import HTTPException

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
from app.core.error_responses import (
    ErrorMessages,
    engine_error_response,
    raise_not_found,
    raise_server_error,
)


class TestEngineErrorResponse:
    @pytest.mark.parametrize(
        "error, expected_status",
        [
            (SessionNotFoundError("abc"), 404),
            (SessionConflictError("abc"), 409),
            (SessionCompleteError("abc"), 400),
            (UnknownQuestionError("Q1", "already answered"), 400),
            (QuestionRepositoryUnavailableError("selection"), 503),
            (QuestionPoolExhaustedError(answered=60, target_total=70, available=3), 500),
            (InvalidStageError(7), 500),
            (AdaptiveEngineError("boom"), 500),
        ],
    )
    def test_status_codes(self, error, expected_status):
        status_code, _ = engine_error_response(error)
        assert status_code == expected_status

    def test_not_found_message_includes_session_id(self):
        _, detail = engine_error_response(SessionNotFoundError("abc"))
        assert detail == "Assessment session not found (ID: abc)."

    def test_unknown_question_message_includes_reason(self):
        _, detail = engine_error_response(
            UnknownQuestionError("PHQ9_3", "was never presented in this session")
        )
        assert detail == (
            "Invalid response for question PHQ9_3: was never presented in this session."
        )

    def test_repository_message_hides_internals(self):
        error = QuestionRepositoryUnavailableError(
            "selection", RuntimeError("connection refused on 10.0.0.5")
        )
        _, detail = engine_error_response(error)
        assert detail == ErrorMessages.QUESTION_BANK_UNAVAILABLE
        assert "10.0.0.5" not in detail


class TestRaiseHelpers:
    def test_raise_not_found(self):
        with pytest.raises(HTTPException) as exc_info:
            raise_not_found(ErrorMessages.dimension_not_found("mania"))
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "No responses recorded for dimension 'mania'."

    def test_raise_server_error_with_error_id(self):
        with pytest.raises(HTTPException) as exc_info:
            raise_server_error(ErrorMessages.ASSESSMENT_FAILED, error_id="req-1")
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail.endswith("(Error ID: req-1)")

    def test_raise_server_error_without_error_id(self):
        with pytest.raises(HTTPException) as exc_info:
            raise_server_error(ErrorMessages.ASSESSMENT_FAILED)
        assert exc_info.value.detail == ErrorMessages.ASSESSMENT_FAILED
