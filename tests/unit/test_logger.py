"""Unit tests for the logging configuration."""

import io
import json
import logging
from typing import Iterator

import pytest
import structlog

from fastapi_license_key.logger import QUIET_LOGGERS, configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    quiet_levels = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    root.handlers = handlers
    root.setLevel(level)
    for name, quiet_level in quiet_levels.items():
        logging.getLogger(name).setLevel(quiet_level)
    structlog.reset_defaults()


def test_json_lines_carry_event_and_context():
    stream = io.StringIO()
    configure_logging(log_level="DEBUG", json_logs=True, stream=stream)

    get_logger("license.test").info("key_activated", key="AAAA-AAAA-AAAA-AAAA")

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["event"] == "key_activated"
    assert record["key"] == "AAAA-AAAA-AAAA-AAAA"
    assert record["level"] == "info"
    assert record["logger"] == "license.test"
    assert record["timestamp"].endswith("Z")


def test_stdlib_records_share_the_handler():
    stream = io.StringIO()
    configure_logging(log_level="INFO", json_logs=True, stream=stream)

    logging.getLogger("license.stdlib").info("started")

    record = json.loads(stream.getvalue().strip())
    assert record["event"] == "started"
    assert record["logger"] == "license.stdlib"


def test_level_filters_and_quiet_loggers():
    stream = io.StringIO()
    configure_logging(log_level="warning", json_logs=False, stream=stream)

    get_logger("license.test").info("hidden")
    get_logger("license.test").warning("shown", count=2)

    output = stream.getvalue()
    assert "hidden" not in output
    assert "shown" in output
    assert "count=2" in output
    assert logging.getLogger().level == logging.WARNING
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    configure_logging(log_level="chatty", stream=io.StringIO())
    assert logging.getLogger().level == logging.INFO
