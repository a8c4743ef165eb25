# tests/unit/logging/test_logger.py — v3
"""Tests for logging/logger.py — formatters and settings-driven setup."""

from __future__ import annotations

import json
import logging
import sys

from stageflow.config.settings import Settings
from stageflow.logging.context import clear_context, set_session_context, set_stage_context
from stageflow.logging.logger import (
    JsonFormatter,
    TextFormatter,
    setup_logging,
)


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    record.__dict__.update(extra)
    return record


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert parsed["timestamp"].endswith("Z")
        assert "context" not in parsed

    def test_format_with_context(self):
        set_session_context("sess-1")
        set_stage_context("critique", 2)
        parsed = json.loads(JsonFormatter().format(_record("test msg")))
        assert parsed["context"] == {"session_id": "sess-1", "stage": "critique", "attempt": 2}

    def test_extra_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"retry": 1})))
        assert parsed["data"] == {"retry": 1}

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        parsed = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in parsed["exception"]


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_session_and_stage(self):
        set_session_context("abcdef0123456789")
        set_stage_context("writing", 3)
        output = TextFormatter().format(_record())
        assert "[abcdef01]" in output
        assert "(writing#3)" in output


class TestSetupLogging:
    def teardown_method(self):
        setup_logging(Settings(_env_file=None))

    def test_json_from_settings(self):
        root = setup_logging(Settings(_env_file=None, log_level="DEBUG"))
        assert root is logging.getLogger("stageflow")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_text_from_settings(self):
        root = setup_logging(Settings(_env_file=None, log_format="text"))
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_reinit_does_not_duplicate(self):
        settings = Settings(_env_file=None)
        setup_logging(settings)
        setup_logging(settings)
        assert len(logging.getLogger("stageflow").handlers) == 1

    def test_with_file(self, tmp_path):
        settings = Settings(_env_file=None, log_file=str(tmp_path / "logs" / "run.log"))
        root = setup_logging(settings)
        assert len(root.handlers) == 2
        assert (tmp_path / "logs").is_dir()

    def test_level_override(self):
        settings = Settings(_env_file=None, log_level="WARNING", log_format="text")
        assert setup_logging(settings, "DEBUG").level == logging.DEBUG
        assert setup_logging(settings).level == logging.WARNING
