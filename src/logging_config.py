"""
Logging setup for reflexion runs.

Every record carries the run's correlation ID (run_id) and, when logged
through a feature logger, the feature being scored. Output is text by
default or one JSON object per line with LOG_FORMAT=json.
"""
import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_context = threading.local()


def set_run_id(run_id: str | None) -> None:
    """Set (or clear, with None) the run_id stamped on every record."""
    _context.run_id = run_id


def get_run_id() -> str | None:
    return getattr(_context, "run_id", None)


# Attributes every LogRecord carries; anything else came in via `extra`
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message", "feature",
}


def _prefix(record: logging.LogRecord) -> str:
    """[run_id][feature] for text output, empty when neither is set."""
    parts = [get_run_id(), getattr(record, "feature", None)]
    return "".join(f"[{p}]" for p in parts if p)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, message, logger, run_id, feature and extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if get_run_id():
            entry["run_id"] = get_run_id()
        if getattr(record, "feature", None):
            entry["feature"] = record.feature

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """timestamp - logger - level - [run_id][feature] message"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        prefix = _prefix(record)
        if not prefix:
            return super().format(record)

        original = record.msg
        record.msg = f"{prefix} {original}"
        try:
            return super().format(record)
        finally:
            # Other handlers format the same record
            record.msg = original


def setup_logging(
    run_id: str | None = None,
    log_level: int | str | None = None,
    log_dir: str | Path | None = "logs",
) -> logging.Logger:
    """
    Configure the root logger for a run.

    Args:
        run_id: Correlation ID stamped on every record
        log_level: Level name or number (default: DEBUG if DEBUG=true, else INFO)
        log_dir: Directory for reflexion_YYYYMMDD.log, or None for stdout only

    Environment Variables:
        LOG_FORMAT: "json" or "text" (default: text)
        DEBUG: "true" for DEBUG level
    """
    if run_id:
        set_run_id(run_id)

    use_json = os.getenv("LOG_FORMAT", "text").lower() == "json"
    if log_level is None:
        debug = os.getenv("DEBUG", "false").lower() == "true"
        log_level = logging.DEBUG if debug else logging.INFO
    elif isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = StructuredFormatter() if use_json else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = None
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        log_file = Path(log_dir) / f"reflexion_{today}.log"
        handlers.insert(0, logging.FileHandler(log_file, encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    root_logger.info(
        "Logging initialized",
        extra={
            "format": "json" if use_json else "text",
            "log_file": str(log_file) if log_file else None,
        },
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class FeatureLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the feature it concerns, keeping per-call extras."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**(kwargs.get("extra") or {}), **self.extra}
        return msg, kwargs


def create_feature_logger(base_logger: logging.Logger, feature: str) -> FeatureLoggerAdapter:
    return FeatureLoggerAdapter(base_logger, {"feature": feature})
