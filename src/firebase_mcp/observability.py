"""Logging setup and per-call correlation ids."""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

from .config import ServerConfig
from .security import redact_secrets

LOGGER_NAME = "firebase_mcp"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Optional attributes passed through `extra=` that the JSON formatter emits
EXTRA_FIELDS = (
    ("correlation_id", "cid"),
    ("tool", "tool"),
    ("latency_ms", "latency_ms"),
    ("status", "status"),
    ("category", "category"),
)


def generate_correlation_id() -> str:
    """Generate a short unique id for tracing one tool call through the logs."""
    return str(uuid.uuid4())[:8]


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": redact_secrets(record.getMessage()),
        }
        for attr, key in EXTRA_FIELDS:
            if hasattr(record, attr):
                log_data[key] = getattr(record, attr)
        if record.exc_info:
            log_data["exc"] = redact_secrets(self.formatException(record.exc_info))
        return json.dumps(log_data, separators=(",", ":"), default=str)


def setup_logging(config: ServerConfig) -> logging.Logger:
    """
    Configure the package logger.

    Logs always go to stderr (stdout carries the stdio protocol stream),
    plus a file when config.log_file is set.

    Args:
        config: Server configuration (log_level, log_format, log_file)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger.setLevel(level)

    if config.log_format == "json":
        formatter: logging.Formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info("Writing logs to %s", log_path)

    return logger
