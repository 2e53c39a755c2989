"""Tagged logging helper shared by every pulsebeats module.

Messages come out as ``[LEVEL][Tag] message | key=value ...``.
"""
from __future__ import annotations

import logging
from typing import Any

LOGGER_NAME = "pulsebeats"
DEFAULT_TAG = "App"
LOG_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"


class _DefaultTagFilter(logging.Filter):
    """Records logged without a tag (e.g. by a child logger) still format."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tag"):
            record.tag = DEFAULT_TAG
        return True


def _build_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(_DefaultTagFilter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


_logger = _build_logger()


def _level_value(level: str | None) -> int:
    value = getattr(logging, (level or "INFO").upper(), None)
    return value if isinstance(value, int) else logging.INFO


def _format_field(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under ``tag``; keyword fields are appended as key=value pairs."""
    if fields:
        message += " | " + " ".join(f"{k}={_format_field(v)}" for k, v in fields.items())
    _logger.log(_level_value(level), message, extra={"tag": tag or DEFAULT_TAG})


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR). Unknown names mean INFO."""
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    return logging.getLevelName(_logger.level)
