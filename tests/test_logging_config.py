"""
test_logging_config.py — Tests for replydesk/logging_config.py

Verifies Loguru setup, stdlib logging interception, level control and
JSON output in production. Uses loguru's sink capture for assertions.

Called by: pytest
Depends on: replydesk/logging_config.py
"""

import logging
from unittest.mock import patch

import pytest
from loguru import logger

from replydesk.config import Settings
from replydesk.logging_config import setup_logging

SETTINGS = "replydesk.logging_config.settings"


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


@pytest.fixture(autouse=True)
def _clean_loguru():
    """Remove all handlers before/after each test for isolation."""
    logger.remove()
    yield
    logger.remove()


def test_setup_logging_adds_handler():
    assert len(logger._core.handlers) == 0
    with patch(SETTINGS, _settings(app_url="http://localhost:8000")):
        setup_logging()
    assert len(logger._core.handlers) > 0


def test_stdlib_logging_intercepted():
    """After setup, stdlib logging.getLogger() messages go through Loguru."""
    with patch(SETTINGS, _settings(app_url="http://localhost:8000")):
        setup_logging()

    # setup_logging() calls logger.remove(), so the capture sink goes on after it
    messages = []
    logger.add(lambda m: messages.append(str(m)), format="{message}")

    logging.getLogger("test.intercept").warning("intercepted message")

    assert any("intercepted message" in m for m in messages)


def test_log_level_from_settings():
    with patch(SETTINGS, _settings(app_url="http://localhost:8000", log_level="warning")):
        setup_logging()
    assert logger._core.min_level == logger.level("WARNING").no


def test_production_mode_uses_serialize():
    """An https app_url switches stdout to JSON."""
    with patch(SETTINGS, _settings(app_url="https://replydesk.example.com")):
        with patch("loguru.logger.add") as mock_add:
            setup_logging()

    serialize_calls = [c for c in mock_add.call_args_list if c.kwargs.get("serialize") is True]
    assert len(serialize_calls) >= 1


def test_production_file_sink_rotates(tmp_path, monkeypatch):
    monkeypatch.setenv("REPLYDESK_LOG_FILE", str(tmp_path / "replydesk.log"))
    with patch(SETTINGS, _settings(app_url="https://replydesk.example.com")):
        with patch("loguru.logger.add") as mock_add:
            setup_logging()

    file_calls = [c for c in mock_add.call_args_list if c.kwargs.get("rotation")]
    assert len(file_calls) == 1
    assert file_calls[0].kwargs["retention"] == "7 days"


def test_context_binding():
    """logger.contextualize() adds fields to log records."""
    records = []
    logger.add(lambda m: records.append(m.record), format="{message}")

    with logger.contextualize(user="sam@replydesk.test"):
        logger.info("ingest log")
    logger.info("outside")

    assert records[0]["extra"].get("user") == "sam@replydesk.test"
    assert "user" not in records[1]["extra"]
