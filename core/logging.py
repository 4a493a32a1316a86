"""
Logging configuration
"""

import json
import logging
import sys
from typing import Optional

from core.config import settings


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def __init__(self, timestamps: bool = True):
        super().__init__()
        self.timestamps = timestamps

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.timestamps:
            payload["timestamp"] = self.formatTime(record, "%Y-%m-%dT%H:%M:%S")
        error_context = getattr(record, "error_context", None)
        if error_context is not None:
            payload["error_context"] = error_context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    timestamps: bool = True
):
    """Configure application logging"""

    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    fmt = (fmt or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter(timestamps=timestamps))
    else:
        text_format = "%(levelname)-8s | %(name)s | %(message)s"
        if timestamps:
            text_format = "%(asctime)s | " + text_format
        handler.setFormatter(logging.Formatter(text_format, datefmt="%Y-%m-%d %H:%M:%S"))

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Reduce driver/scheduler noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level_name} level ({fmt})")
