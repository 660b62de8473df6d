"""
Logging configuration for the Kite API.

Configures the stdlib root logger once: coloured console output on a
TTY, JSON lines when LOG_JSON is set, and an optional rotating file.
"""
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import get_settings
from .request_context import request_id_var

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    {
        "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
        "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
        "threadName", "taskName",
    }
)


class ContextFilter(logging.Filter):
    """Stamps request_id and service fields onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        rid = getattr(record, "request_id", None) or request_id_var.get()
        if rid is not None:
            record.request_id = rid
        if not hasattr(record, "service"):
            record.service = "kite"
        return True


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per line: time, level, name, message plus extras."""

    REDACT_KEYS = {"token", "authorization", "password", "secret"}

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            payload[key] = "***REDACTED***" if key.lower() in self.REDACT_KEYS else value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _build_formatter(use_json: bool, use_color: bool) -> logging.Formatter:
    if use_json:
        return JSONFormatter(datefmt=LOG_DATE_FORMAT)
    if use_color:
        return ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the root logger. Safe to call more than once.

    Args:
        level: overrides LOG_LEVEL
        log_file: overrides LOG_FILE

    Returns:
        logging.Logger: the "kite" logger
    """
    global _CONFIGURED
    logger = logging.getLogger("kite")
    if _CONFIGURED:
        return logger

    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(level or settings.log_level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    context_filter = ContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.addFilter(context_filter)
    console.setFormatter(_build_formatter(settings.log_json, sys.stdout.isatty()))
    root.addHandler(console)

    file_path = log_file or settings.log_file
    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(file_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(_build_formatter(settings.log_json, False))
        root.addHandler(file_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        named = logging.getLogger(name)
        named.handlers = []
        named.propagate = True

    # urllib3 logs every retry of the kubernetes client at WARNING
    logging.getLogger("urllib3").setLevel(logging.ERROR)

    _CONFIGURED = True
    return logger