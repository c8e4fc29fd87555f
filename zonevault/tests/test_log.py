"""Tests for logging setup."""

import json
import logging

import pytest
from rich.logging import RichHandler

from zonevault.log import ROOT_LOGGER, ContextFilter, JsonFormatter, log_event, setup_logging


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def _record(msg="Snapshot created", context=None):
    record = logging.LogRecord("zonevault.snapshot.capture", logging.INFO, __file__, 1, msg, None, None)
    record.context = context
    return record


def test_json_formatter_includes_context():
    payload = json.loads(JsonFormatter().format(_record(context={"zone": "example.com", "count": 2})))

    assert payload["level"] == "INFO"
    assert payload["module"] == "zonevault.snapshot.capture"
    assert payload["msg"] == "Snapshot created"
    assert payload["context"] == {"zone": "example.com", "count": 2}


def test_json_formatter_without_context():
    payload = json.loads(JsonFormatter().format(_record()))
    assert "context" not in payload


def test_context_filter_adds_missing_attribute():
    record = logging.LogRecord("zonevault", logging.INFO, __file__, 1, "hello", None, None)
    assert ContextFilter().filter(record)
    assert record.context is None


def test_setup_logging_replaces_handlers():
    setup_logging("debug")
    logger = setup_logging("WARNING", json_format=True)

    [handler] = logger.handlers
    assert isinstance(handler.formatter, JsonFormatter)
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_setup_logging_rich_by_default():
    [handler] = setup_logging().handlers
    assert isinstance(handler, RichHandler)


def test_log_event_attaches_context():
    records = []

    class Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger("zonevault.tests.log_event")
    logger.addHandler(Collect())
    logger.setLevel(logging.INFO)
    try:
        log_event(logger, logging.INFO, "Automatic backup completed", total=3, failed=0)
    finally:
        logger.handlers.clear()

    [record] = records
    assert record.context == {"total": 3, "failed": 0}
