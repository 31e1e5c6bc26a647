"""Structured Logging — verifies JSON log shape and extra-field surfacing."""

import json
import logging

from backbone.infrastructure.observability import JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "backbone.services.query_executor", logging.ERROR, __file__, 1,
        "Query error: %s", ("boom",), None,
    )
    record.__dict__.update(extra)
    return record


def test_base_fields_present():
    data = json.loads(JSONFormatter().format(_record()))
    assert data["level"] == "ERROR"
    assert data["logger"] == "backbone.services.query_executor"
    assert data["message"] == "Query error: boom"
    assert "timestamp" in data


def test_extra_fields_surfaced_and_none_skipped():
    record = _record(
        subscription_id="sub-1", attempt=2, category="network",
        error_code=None, query_context={"table": "lessons"},
    )
    data = json.loads(JSONFormatter().format(record))
    assert data["subscription_id"] == "sub-1"
    assert data["attempt"] == 2
    assert data["category"] == "network"
    assert data["query_context"] == {"table": "lessons"}
    assert "error_code" not in data


def test_unserializable_extra_falls_back_to_str():
    data = json.loads(JSONFormatter().format(_record(query_context={"at": object()})))
    assert data["query_context"]["at"].startswith("<object")


def test_setup_logging_is_idempotent():
    before = list(logging.root.handlers)
    level = logging.root.level
    try:
        setup_logging("info", "text")
        handler = setup_logging("debug", "json")
        added = [h for h in logging.root.handlers if h not in before]
        assert added == [handler]
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.root.level == logging.DEBUG
    finally:
        for h in logging.root.handlers[:]:
            if h not in before:
                logging.root.removeHandler(h)
        logging.root.setLevel(level)
