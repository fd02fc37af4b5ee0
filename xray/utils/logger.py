"""
Logger factory for the X-Ray client.

Every module grabs a named logger with get_logger(__name__). Nothing is
configured on import; applications opt into handlers with setup_logging().
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

ROOT_LOGGER = "xray"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} [{record.levelname:8s}] {record.name} - {record.getMessage()}"
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Handlers are attached by setup_logging()."""
    return logging.getLogger(name)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Attach a stream handler to the root "xray" logger.

    Calling this twice replaces the previous handler instead of stacking.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_format: "text" or "json".

    Raises:
        ValueError: If log_format is unknown.
    """
    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    elif log_format == "text":
        formatter = TextFormatter()
    else:
        raise ValueError(f"Unknown log format: {log_format!r} (expected 'text' or 'json')")

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        if getattr(handler, "_xray_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler._xray_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root
