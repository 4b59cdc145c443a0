"""
Structured logging.

JSON log records with the current video ID attached from context.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from shared.config import settings

_video_id: ContextVar[Optional[str]] = ContextVar("video_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def set_video_id(video_id) -> None:
    """Attach a video ID to all log records emitted from the current context."""
    _video_id.set(str(video_id) if video_id is not None else None)


def get_video_id() -> Optional[str]:
    return _video_id.get()


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        video_id = get_video_id()
        if video_id and "video_id" not in record.__dict__:
            payload["video_id"] = video_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger("storyshort")
    root.setLevel(settings.log_level)
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the application namespace.

    Args:
        name: Module or component name

    Returns:
        Configured logger
    """
    _configure_root()
    return logging.getLogger(f"storyshort.{name}")
