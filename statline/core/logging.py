"""
Structured logging for ingest runs.

This module provides:
- JSON log formatting for machine-read pipelines
- Colored console formatting for local development
- Run ID tracking via a context variable so every line of one ingest run
  can be correlated
"""
import logging
import json
import sys
from datetime import datetime
from typing import Any
from contextvars import ContextVar

run_id_var: ContextVar[str] = ContextVar("run_id", default="")

# LogRecord attributes that are not user supplied "extra" fields
_STANDARD_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
})


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Outputs logs as JSON objects with the following fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level
    - logger: Logger name
    - message: Log message
    - run_id: Ingest run ID (if set)
    - exception: Exception details (if an exception occurred)
    - extra: Any additional context passed via ``extra=``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": run_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_keys = {
            k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS
        }
        if extra_keys:
            log_data["extra"] = extra_keys

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for development."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        run_id = run_id_var.get()

        base_msg = f"{level_color}[{record.levelname}]{self.RESET} {record.name}: {record.getMessage()}"

        if run_id:
            base_msg += f" | run_id={run_id}"

        if record.exc_info:
            base_msg += "\n" + self.formatException(record.exc_info)

        return base_msg


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    handler: logging.Handler | None = None,
) -> None:
    """
    Configure logging for an ingest process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, use JSON formatter. If False, use colored console formatter.
        handler: Optional custom handler. If None, creates StreamHandler to stdout.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    formatter = JSONFormatter() if json_output else ColoredFormatter()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def configure_from_settings() -> None:
    """Configure logging from LOG_LEVEL / LOG_JSON settings."""
    from statline.core.config import settings

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def set_run_id(run_id: str) -> Any:
    """
    Set the ingest run ID in the context.

    Returns:
        Token that can be used to reset the context variable
    """
    return run_id_var.set(run_id)


def get_run_id() -> str:
    """Get the current run ID, or empty string if not set."""
    return run_id_var.get()


def clear_run_id(token: Any) -> None:
    """
    Clear the run ID from the context.

    Args:
        token: The token returned by set_run_id
    """
    run_id_var.reset(token)
