"""
VOICETURN Logging Configuration

Centralized logging setup for the voice turn-taking system:
- Console output for interactive sessions
- Rotating file handler with size limits
- Optional one-line JSON records for log shipping
- Per-component log levels (capture, playback, orchestrator, ...)

Usage:
    from voiceturn.logging_config import setup_logging, get_logger

    setup_logging(log_level="INFO", log_file="voiceturn.log")

    logger = get_logger(__name__)
    logger.info("Call started")
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Module-level constants
ROOT_LOGGER_NAME = "voiceturn"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, DEFAULT_DATE_FORMAT),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)


def setup_logging(
    log_level: str = DEFAULT_LOG_LEVEL,
    log_file: Optional[str | Path] = None,
    json_format: bool = False,
) -> None:
    """Configure logging for the voiceturn application.

    Sets up the package logger with a console handler and an optional
    rotating file handler. Safe to call more than once; handlers are
    replaced, not accumulated.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file; parent directories are created
        json_format: If True, emit one JSON object per record
    """
    level = LOG_LEVELS.get(log_level.upper(), logging.INFO)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(_make_formatter(json_format))
    root_logger.addHandler(console_handler)

    if log_file:
        from logging.handlers import RotatingFileHandler

        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=DEFAULT_MAX_BYTES,
            backupCount=DEFAULT_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(_make_formatter(json_format))
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the voiceturn namespace.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance inheriting the package configuration
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_component_level(component: str, level: str) -> None:
    """Set the log level for one component.

    Args:
        component: Module name inside the package (e.g. "capture", "playback")
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Example:
        set_component_level("level_meter", "DEBUG")
    """
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
    logger.setLevel(LOG_LEVELS.get(level.upper(), logging.INFO))
