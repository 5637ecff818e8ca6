"""Tests for structured log formatting"""
import io
import json
import logging
import sys

from tokencart.utils.logger import LOGGER_NAME, JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("tokencart", logging.WARNING, __file__, 1, "Authentication failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_known_extras_are_lifted():
    line = JSONFormatter().format(_record(principal_id="u1", reason="expired", action="authenticate"))
    data = json.loads(line)
    assert data["level"] == "WARNING"
    assert data["message"] == "Authentication failed"
    assert data["principal_id"] == "u1"
    assert data["reason"] == "expired"
    assert data["action"] == "authenticate"


def test_unknown_extras_are_dropped():
    data = json.loads(JSONFormatter().format(_record(secret="pw123")))
    assert "secret" not in data
    assert "pw123" not in json.dumps(data)


def test_timestamp_is_record_time_in_utc():
    record = _record()
    record.created = 1_700_000_000.25
    record.msecs = 250.0
    assert json.loads(JSONFormatter().format(record))["timestamp"] == "2023-11-14T22:13:20.250Z"


def test_unset_extras_are_omitted():
    data = json.loads(JSONFormatter().format(_record(principal_id=None, operation="cart:read")))
    assert "principal_id" not in data
    assert data["operation"] == "cart:read"


def test_custom_field_set():
    data = json.loads(JSONFormatter(fields=("tenant",)).format(_record(tenant="t1", principal_id="u1")))
    assert data["tenant"] == "t1"
    assert "principal_id" not in data


def test_exception_included():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("tokencart", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    data = json.loads(JSONFormatter().format(record))
    assert "ValueError: boom" in data["exception"]


def test_setup_logging_replaces_only_its_own_handler():
    log = logging.getLogger(LOGGER_NAME)
    foreign = logging.NullHandler()
    log.addHandler(foreign)
    stream = io.StringIO()
    try:
        setup_logging("debug", stream=stream)
        setup_logging("debug", stream=stream)
        assert foreign in log.handlers
        assert len(log.handlers) == 2

        log.debug("Cart updated", extra={"owner_id": "u1"})
        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["owner_id"] == "u1"
    finally:
        log.removeHandler(foreign)
        setup_logging()
