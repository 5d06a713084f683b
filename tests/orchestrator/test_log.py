"""Tests for loguru setup and stdlib forwarding."""

from __future__ import annotations

import logging
import sys

import pytest
from loguru import logger

from agentdesk.orchestrator.log import setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    root.handlers[:] = handlers
    root.setLevel(level)


def test_stdlib_records_reach_loguru() -> None:
    setup_logging("debug")
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        logging.getLogger("agentdesk.sdk").warning("hello %s", "world")
    finally:
        logger.remove(sink_id)

    (record,) = records
    assert record["message"] == "hello world"
    assert record["level"].name == "WARNING"
    assert record["function"] == "test_stdlib_records_reach_loguru"


def test_noisy_libraries_are_quieted() -> None:
    setup_logging("DEBUG")
    assert logging.getLogger("claude_agent_sdk").level == logging.WARNING
    assert logging.getLogger("asyncio").level == logging.WARNING


def test_log_file_sink(tmp_path) -> None:
    path = tmp_path / "agentdesk.log"
    setup_logging("INFO", log_file=path)
    logger.info("chat started")
    logger.remove()

    text = path.read_text()
    assert "Logging initialised" in text
    assert "chat started" in text
