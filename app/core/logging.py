"""
key=value logging for Voice Req Engine.

Every logger gets one stdout handler with StructuredFormatter. Session,
pass and trigger ids passed through `log_with_context` become their own
keys, so a single analysis pass can be followed with grep:

    timestamp=... level=INFO module=analysis_pipeline ... pass_id=3f2a... trigger=pause
"""

import logging
import sys
from typing import Any

# Promoted to top-level keys when present on a record
CONTEXT_FIELDS = ("session_id", "pass_id", "trigger")

_ENV_LEVELS = {"dev": logging.DEBUG}


class StructuredFormatter(logging.Formatter):
    """Render a record as space separated key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        fields.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        fields.update(getattr(record, "extra_data", {}))

        line = " ".join(f"{key}={value}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _configured_level() -> int:
    """LOG_LEVEL if set, otherwise DEBUG in dev and INFO elsewhere."""
    from app.core.config import get_settings

    settings = get_settings()
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return _ENV_LEVELS.get(settings.REQ_ENGINE_ENV, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return the named logger, attaching the structured stdout handler once."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    logger.setLevel(_configured_level())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log `msg` with keyword context.

    CONTEXT_FIELDS (session_id, pass_id, trigger) become record attributes;
    anything else, such as feature_id or tokens_input, is appended as extra
    key=value pairs.
    """
    extra: dict[str, Any] = {name: kwargs.pop(name) for name in CONTEXT_FIELDS if name in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
