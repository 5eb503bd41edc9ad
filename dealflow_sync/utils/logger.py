"""
Logging configuration for the deal flow transcript sync layer.

Provides structured logging with:
- Console and file handlers
- Separate log files per component
- Optional JSON formatting
- Contextual logging with extra fields (meeting, deal, session ids)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

ROOT_LOGGER_NAME = "dealflow_sync"

# Component-specific logger names
LOGGER_NAMES = {
    "main": ROOT_LOGGER_NAME,
    "registry": f"{ROOT_LOGGER_NAME}.registry",
    "provider": f"{ROOT_LOGGER_NAME}.provider",
    "scheduler": f"{ROOT_LOGGER_NAME}.scheduler",
    "listener": f"{ROOT_LOGGER_NAME}.listener",
    "cascade": f"{ROOT_LOGGER_NAME}.cascade",
    "momentum": f"{ROOT_LOGGER_NAME}.momentum",
}

# Log file names per component
LOG_FILES = {
    "main": "sync.log",
    "provider": "provider.log",
    "errors": "errors.log",
}

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields from adapters and `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_format: bool = False,
    console_output: bool = True,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files. If None, file logging is disabled.
        json_format: Use JSON formatting for logs
        console_output: Enable console output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    standard_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)

        console_handler.setFormatter(
            JSONFormatter()
            if json_format
            else logging.Formatter(standard_format, datefmt=date_format)
        )

        root_logger.addHandler(console_handler)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_formatter = (
            JSONFormatter()
            if json_format
            else logging.Formatter(standard_format, datefmt=date_format)
        )

        main_handler = logging.FileHandler(log_dir / LOG_FILES["main"])
        main_handler.setLevel(numeric_level)
        main_handler.setFormatter(file_formatter)
        root_logger.addHandler(main_handler)

        # ERROR and above
        error_handler = logging.FileHandler(log_dir / LOG_FILES["errors"])
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)

        for component, filename in LOG_FILES.items():
            if component in ("main", "errors"):
                continue

            component_logger = logging.getLogger(LOGGER_NAMES[component])
            component_logger.handlers.clear()
            component_handler = logging.FileHandler(log_dir / filename)
            component_handler.setLevel(numeric_level)
            component_handler.setFormatter(file_formatter)
            component_logger.addHandler(component_handler)

    root_logger.propagate = False


def get_logger(name: str = "main") -> logging.Logger:
    """
    Get a logger instance for the specified component.

    Args:
        name: Component name (main, registry, provider, scheduler, listener,
              cascade, momentum) or a custom name that will be prefixed
              with 'dealflow_sync.'

    Returns:
        Logger instance for the component.
    """
    logger_name = LOGGER_NAMES.get(name, f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(logger_name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    Used to tag every line of a sync session with its meeting and deal.
    """

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Add extra context to the log message."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra

        if self.extra:
            context_str = " ".join(f"[{k}={v}]" for k, v in self.extra.items())
            msg = f"{context_str} {msg}"

        return msg, kwargs


def get_contextual_logger(
    name: str = "main", **context: Any
) -> LoggerAdapter:
    """
    Get a logger with contextual information attached.

    Args:
        name: Component name
        **context: Key-value pairs to include in all log messages

    Returns:
        LoggerAdapter with context attached.

    Example:
        logger = get_contextual_logger("scheduler", meeting_id="m-123")
        logger.info("Attempt started")  # Includes meeting_id in output
    """
    base_logger = get_logger(name)
    return LoggerAdapter(base_logger, context)
