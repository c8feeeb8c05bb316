"""Tests for logging setup."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from ai_bridge.utils.log_config import JsonLogFormatter, configure_logging


@pytest.fixture(autouse=True)
def _restore_package_logger():
    logger = logging.getLogger("ai_bridge")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    for handler in logger.handlers:
        if handler not in saved[0]:
            handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_text_logging_goes_to_stderr(capsys):
    configure_logging("info")
    logging.getLogger("ai_bridge.test").info("hello stderr")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "hello stderr" in captured.err


def test_level_applied():
    logger = configure_logging("warning")
    assert logger.level == logging.WARNING


def test_reconfigure_replaces_handlers():
    configure_logging("info")
    logger = configure_logging("info")
    assert len(logger.handlers) == 1


def test_json_file_output(tmp_path):
    log_file = tmp_path / "logs" / "bridge.log"
    configure_logging("debug", "json", str(log_file))
    logging.getLogger("ai_bridge.x").debug("structured")
    for handler in logging.getLogger("ai_bridge").handlers:
        handler.flush()
    record = json.loads(log_file.read_text().splitlines()[-1])
    assert record["message"] == "structured"
    assert record["level"] == "DEBUG"
    assert record["logger"] == "ai_bridge.x"


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("n", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    payload = json.loads(JsonLogFormatter().format(record))
    assert "ValueError: boom" in payload["exc_info"]


def test_bare_file_name_goes_to_platform_log_dir(tmp_path):
    with patch("ai_bridge.utils.log_config.get_log_dir", return_value=tmp_path / "platform"):
        configure_logging("info", "text", "bridge.log")
    logging.getLogger("ai_bridge.y").info("placed")
    for handler in logging.getLogger("ai_bridge").handlers:
        handler.flush()
    assert "placed" in (tmp_path / "platform" / "bridge.log").read_text()
