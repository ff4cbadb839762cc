"""
VOICETURN Unit Tests - Logging Configuration

Tests setup_logging, get_logger, set_component_level and the JSON formatter.

Run:
    pytest tests/unit/test_logging_config.py -v
"""

import json
import logging
import sys
import tempfile
from pathlib import Path

import pytest

from voiceturn.logging_config import (
    JsonFormatter,
    ROOT_LOGGER_NAME,
    get_logger,
    set_component_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.NOTSET)


def _file_handlers(logger: logging.Logger):
    return [h for h in logger.handlers if hasattr(h, "baseFilename")]


# =============================================================================
# Test setup_logging Function
# =============================================================================

class TestSetupLogging:
    """Unit tests for setup_logging function."""

    def test_setup_logging_default(self):
        """Test setup_logging with default parameters."""
        setup_logging()

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1

    def test_setup_logging_custom_level(self):
        """Test setup_logging with custom log level."""
        setup_logging(log_level="DEBUG")
        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.DEBUG

    def test_setup_logging_unknown_level_falls_back_to_info(self):
        setup_logging(log_level="chatty")
        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.INFO

    def test_setup_logging_with_file(self):
        """Test setup_logging creates file handler when log_file specified."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "voiceturn.log"
            setup_logging(log_file=log_path)

            root_logger = logging.getLogger(ROOT_LOGGER_NAME)
            file_handlers = _file_handlers(root_logger)
            assert len(file_handlers) == 1
            assert Path(file_handlers[0].baseFilename) == log_path

            for h in file_handlers:
                h.close()
                root_logger.removeHandler(h)

    def test_setup_logging_creates_parent_directory(self):
        """Test that setup_logging creates parent directories for log file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "calls" / "today" / "voiceturn.log"
            setup_logging(log_file=log_path)

            assert log_path.parent.exists()

            root_logger = logging.getLogger(ROOT_LOGGER_NAME)
            for h in _file_handlers(root_logger):
                h.close()
                root_logger.removeHandler(h)

    def test_setup_logging_clears_existing_handlers(self):
        """Test that repeated setup does not accumulate handlers."""
        setup_logging(log_level="INFO")
        setup_logging(log_level="DEBUG")

        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1

    def test_json_format(self, capsys):
        setup_logging(log_level="INFO", json_format=True)
        get_logger("orchestrator").info("Call started")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["logger"] == "voiceturn.orchestrator"
        assert record["level"] == "INFO"
        assert record["message"] == "Call started"


# =============================================================================
# Test get_logger Function
# =============================================================================

class TestGetLogger:
    """Unit tests for get_logger function."""

    def test_adds_package_prefix(self):
        assert get_logger("capture").name == "voiceturn.capture"

    def test_preserves_existing_prefix(self):
        assert get_logger("voiceturn.playback").name == "voiceturn.playback"

    def test_returns_logger(self):
        assert isinstance(get_logger("x"), logging.Logger)


class TestSetComponentLevel:
    """Unit tests for set_component_level function."""

    def test_sets_component_level(self):
        set_component_level("level_meter", "DEBUG")
        assert logging.getLogger("voiceturn.level_meter").level == logging.DEBUG
        set_component_level("level_meter", "WARNING")
        assert logging.getLogger("voiceturn.level_meter").level == logging.WARNING


class TestJsonFormatter:
    """Unit tests for the JSON formatter."""

    def test_includes_exception(self):
        formatter = JsonFormatter()
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "voiceturn.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )
        payload = json.loads(formatter.format(record))
        assert payload["message"] == "failed"
        assert "ValueError: boom" in payload["exception"]
