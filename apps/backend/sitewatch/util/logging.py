from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .security import redact_secrets

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s %(threadName)s %(name)s: %(message)s"
LOG_FILE_NAME = "sitewatch.log"

# Chatty third-party loggers; urllib3 logs full request URLs at DEBUG.
_NOISY_LOGGERS = ("urllib3", "requests", "multipart")


class RedactionFilter(logging.Filter):
    """Masks API keys before a record reaches any handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if message:
            record.msg = redact_secrets(message)
            record.args = ()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": redact_secrets(record.getMessage()),
        }
        if record.exc_info:
            payload["exc"] = redact_secrets(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=True)


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str, data_dir: Path) -> Path:
    """Route the root logger to the console and a rotating JSON file; returns the file path."""
    logs_dir = data_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(_resolve_level(level))

    redaction = RedactionFilter()
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console.addFilter(redaction)

    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())
    file_handler.addFilter(redaction)

    root_logger.addHandler(console)
    root_logger.addHandler(file_handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
