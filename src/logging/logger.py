# src/logging/logger.py — v3
"""Formatters and setup for the ``stageflow`` logger tree.

JSON lines carry the current session/stage/attempt context under "context";
text lines show it inline as ``[session] (stage#attempt)``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from stageflow.core.models import format_timestamp
from stageflow.logging.context import get_context
from stageflow.logging.handlers import create_rotating_handler

if TYPE_CHECKING:
    from stageflow.config.settings import Settings

ROOT_LOGGER = "stageflow"


def _created(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": format_timestamp(_created(record)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        line = f"{_created(record):%Y-%m-%d %H:%M:%S} [{record.levelname:8s}] {record.name}"
        if ctx.session_id:
            line += f" [{ctx.session_id[:8]}]"
        if ctx.stage:
            line += f" ({ctx.stage})" if ctx.attempt is None else f" ({ctx.stage}#{ctx.attempt})"
        return f"{line}: {record.getMessage()}"


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JsonFormatter,
    "text": TextFormatter,
}


def setup_logging(settings: Settings, level: str | None = None) -> logging.Logger:
    """Attach stdout (and LOG_FILE, if set) handlers to the stageflow logger.

    Calling it again replaces the previous handlers. ``level`` overrides
    LOG_LEVEL, as the CLI's ``--verbose`` flag does.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel((level or settings.log_level).upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = _FORMATTERS[settings.log_format]()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(create_rotating_handler(
            settings.log_file,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    return root
