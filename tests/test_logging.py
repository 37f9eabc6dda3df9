"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys

import pytest

from pocketledger.config import TestingConfig
from pocketledger.logging_config import JSONFormatter, get_logger, setup_logging


def _record(**kwargs) -> logging.LogRecord:
    defaults = dict(
        name="pocketledger.test",
        level=logging.INFO,
        pathname="ledger.py",
        lineno=42,
        msg="Record created",
        args=(),
        exc_info=None,
    )
    defaults.update(kwargs)
    record = logging.LogRecord(**defaults)
    record.funcName = "create_record"
    return record


def test_json_formatter_emits_core_fields():
    payload = json.loads(JSONFormatter().format(_record()))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "pocketledger.test"
    assert payload["message"] == "Record created"
    assert payload["function"] == "create_record"
    assert payload["line"] == 42
    assert "timestamp" in payload
    assert "extra" not in payload


def test_json_formatter_nests_extra_fields():
    record = _record()
    record.owner_id = "alice"
    record.delta = "-10.00"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["extra"] == {"owner_id": "alice", "delta": "-10.00"}


def test_json_formatter_with_exception():
    try:
        raise ValueError("Test error")
    except ValueError:
        exc_info = sys.exc_info()

    payload = json.loads(JSONFormatter().format(_record(level=logging.ERROR, exc_info=exc_info)))

    assert payload["exception"]["type"] == "ValueError"
    assert "Test error" in payload["exception"]["message"]
    assert payload["exception"]["traceback"]


def test_setup_logging_writes_json_file(tmp_path, monkeypatch):
    monkeypatch.setenv("POCKETLEDGER_DATA_DIR", str(tmp_path))
    config = TestingConfig()

    logger = setup_logging(config)
    logger.warning("Balance drift detected", extra={"owner_id": "alice"})
    for handler in logger.handlers:
        handler.flush()

    assert logger.name == "pocketledger"
    assert len(logger.handlers) == 2

    log_file = tmp_path / "logs" / "pocketledger.log"
    lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
    assert lines[-1]["message"] == "Balance drift detected"
    assert lines[-1]["extra"]["owner_id"] == "alice"

    # Repeated setup replaces handlers instead of stacking them.
    assert len(setup_logging(config).handlers) == 2
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.mark.parametrize("dev_mode", [True, False])
def test_console_level_follows_dev_mode(tmp_path, monkeypatch, dev_mode):
    monkeypatch.setenv("POCKETLEDGER_DATA_DIR", str(tmp_path))
    config = TestingConfig()
    config.DEV_MODE = dev_mode

    logger = setup_logging(config)
    console = [
        handler
        for handler in logger.handlers
        if not isinstance(handler, logging.handlers.RotatingFileHandler)
    ]

    assert console[0].level == (logging.INFO if dev_mode else logging.WARNING)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_get_logger_namespaces_names():
    assert get_logger("services.ledger").name == "pocketledger.services.ledger"
    assert get_logger("pocketledger.infra").name == "pocketledger.infra"
