"""
JSON logging for the workout tracker image API.

One JSON object per line on stdout. Level comes from WORKOUT_TRACKER_LOG_LEVEL,
else DEBUG in API_ENV=stg and INFO elsewhere.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Read env only; do not import config (validates API_ENV at import time).
_env = os.environ.get("API_ENV", "prod")
_level_override = os.environ.get("WORKOUT_TRACKER_LOG_LEVEL", "").upper()

if _level_override in ("DEBUG", "INFO", "WARNING", "ERROR"):
    LOG_LEVEL = getattr(logging, _level_override)
elif _env == "stg":
    LOG_LEVEL = logging.DEBUG
else:
    LOG_LEVEL = logging.INFO

# SDK loggers that are chatty at DEBUG (request signing, gRPC channel setup).
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "google", "grpc")

# Fields the access log middleware attaches through `extra={...}`.
REQUEST_FIELDS = ("client", "method", "path", "status_code")


class JSONLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in REQUEST_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        if hasattr(record, "duration"):
            entry["duration_ms"] = round(record.duration * 1000, 2)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging() -> None:
    """Route root, uvicorn and package loggers through one JSON handler on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)

    # uvicorn installs its own handlers; let its records reach the root instead.
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(LOG_LEVEL, logging.WARNING))

    logging.getLogger("workout_tracker").setLevel(LOG_LEVEL)
