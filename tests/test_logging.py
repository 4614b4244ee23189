"""Tests for logging setup and the JSON formatter."""

import json
import logging
import sys

import pytest

from gateway_core.logging_config import StructuredFormatter, setup_logging


@pytest.fixture
def restore_logger():
    logger = logging.getLogger("gateway_core")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "gateway_core.tools.executor",
        logging.WARNING,
        __file__,
        1,
        "tool %s failed",
        ("lint",),
        None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_structured_formatter_emits_json_with_extras():
    line = StructuredFormatter().format(_record(session_id="s1", tool_id="lint", other="x"))
    entry = json.loads(line)
    assert entry["msg"] == "tool lint failed"
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "gateway_core.tools.executor"
    assert entry["session_id"] == "s1"
    assert entry["tool_id"] == "lint"
    assert "other" not in entry


def test_structured_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()
    entry = json.loads(StructuredFormatter().format(record))
    assert "RuntimeError: boom" in entry["exc"]


def test_setup_logging_does_not_stack_handlers(restore_logger):
    setup_logging(level="debug", fmt="json")
    setup_logging(level="warning", fmt="json")
    assert len(restore_logger.handlers) == 1
    assert restore_logger.level == logging.WARNING
    assert isinstance(restore_logger.handlers[0].formatter, StructuredFormatter)
    assert restore_logger.propagate is False


def test_setup_logging_reads_environment(restore_logger, monkeypatch):
    monkeypatch.setenv("GATEWAY_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("GATEWAY_LOG_FORMAT", "text")
    setup_logging()
    assert restore_logger.level == logging.ERROR
    assert not isinstance(restore_logger.handlers[0].formatter, StructuredFormatter)
