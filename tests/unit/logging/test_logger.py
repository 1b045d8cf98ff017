# tests/unit/logging/test_logger.py — v1
"""Tests for logging/logger.py — logger factory and formatters."""

from __future__ import annotations

import json
import logging

from mediaindex.logging.context import clear_context, set_page_context, set_session_context
from mediaindex.logging.logger import JsonFormatter, TextFormatter, get_logger, setup_logging


def _record(msg: str = "Hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
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
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_session_context("s-1", stage="scanning")
        set_page_context("/acme/site/index.html", "scan-worker-1")
        parsed = json.loads(JsonFormatter().format(_record()))
        assert parsed["context"] == {
            "session_id": "s-1",
            "stage": "scanning",
            "worker_id": "scan-worker-1",
            "page": "/acme/site/index.html",
        }

    def test_format_with_data(self):
        parsed = json.loads(JsonFormatter().format(_record(data={"pages": 3})))
        assert parsed["data"] == {"pages": 3}


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_format_with_session(self):
        set_session_context("s-9", stage="crawling")
        output = TextFormatter().format(_record())
        assert "<s-9>" in output
        assert "(crawling)" in output


class TestGetLogger:
    def test_prefixes_name(self):
        assert get_logger("pipeline").name == "mediaindex.pipeline"

    def test_keeps_qualified_name(self):
        assert get_logger("mediaindex.scan.worker").name == "mediaindex.scan.worker"


class TestSetupLogging:
    def teardown_method(self):
        root = logging.getLogger("mediaindex")
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()
        root.propagate = True
        root.setLevel(logging.NOTSET)

    def test_handlers_replaced(self):
        root = setup_logging(level="DEBUG", log_format="text")
        setup_logging(level="DEBUG", log_format="text")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_file_handler(self, tmp_path):
        root = setup_logging(log_file=tmp_path / "logs" / "scan.log", rotation="1MB", retention=2)
        assert len(root.handlers) == 2
        assert (tmp_path / "logs").is_dir()
