"""
Tests for structured logging configuration and the JSON formatter.
"""
import json
import logging
import sys

import pytest

from app.core.logging_config import (
    JSONFormatter,
    build_logging_config,
    request_id_context,
)


def _record(msg="Test message", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="app.core.adaptive.coordinator",
        level=level,
        pathname="coordinator.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for the JSONFormatter class."""

    def test_basic_log_entry(self):
        entry = json.loads(JSONFormatter().format(_record()))

        assert "timestamp" in entry
        assert entry["level"] == "INFO"
        assert entry["logger"] == "app.core.adaptive.coordinator"
        assert entry["message"] == "Test message"
        assert "request_id" not in entry
        assert "source" not in entry

    def test_session_fields_included(self):
        record = _record(
            "Stage 1 complete", session_id="abc123", stage=1, avg_confidence=32
        )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["session_id"] == "abc123"
        assert entry["stage"] == 1
        assert entry["avg_confidence"] == 32

    def test_unlisted_extra_fields_ignored(self):
        entry = json.loads(JSONFormatter().format(_record(password="secret")))
        assert "password" not in entry

    def test_request_id_from_context(self):
        token = request_id_context.set("req-42")
        try:
            entry = json.loads(JSONFormatter().format(_record()))
        finally:
            request_id_context.reset(token)

        assert entry["request_id"] == "req-42"

    def test_errors_include_source_location(self):
        entry = json.loads(JSONFormatter().format(_record(level=logging.ERROR)))
        assert entry["source"] == "coordinator.py:42"

    def test_exception_formatted(self):
        try:
            raise ValueError("pool exhausted")
        except ValueError:
            record = _record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: pool exhausted" in entry["exception"]

    def test_non_serializable_values_stringified(self):
        entry = json.loads(JSONFormatter().format(_record(stage=object())))
        assert entry["stage"].startswith("<object object")


class TestBuildLoggingConfig:
    """Tests for the dictConfig payload."""

    def test_development_uses_plain_formatter(self):
        config = build_logging_config("DEBUG", json_output=False)
        assert config["handlers"]["console"]["formatter"] == "default"
        assert config["root"]["level"] == logging.DEBUG

    def test_production_uses_json_formatter(self):
        config = build_logging_config("INFO", json_output=True)
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"] is JSONFormatter

    @pytest.mark.parametrize("name", ["nonsense", ""])
    def test_unknown_level_falls_back_to_info(self, name):
        config = build_logging_config(name, json_output=False)
        assert config["loggers"]["app"]["level"] == logging.INFO

    def test_noisy_loggers_quieted(self):
        config = build_logging_config("DEBUG", json_output=False)
        assert config["loggers"]["sqlalchemy.engine"]["level"] == logging.WARNING
        assert config["loggers"]["uvicorn.access"]["level"] == logging.WARNING
