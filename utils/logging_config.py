"""
Logging configuration for PromptForge.

Provides structured logging with multiple outputs:
- Colored console output (human-readable)
- Rotating file log (human-readable)
- JSON structured log (machine-parseable)
- Error-only log (quick problem identification)

Library modules log through ``logging.getLogger(__name__)``; everything under
the ``promptforge`` package propagates to the root logger configured here.
"""

import json
import logging
import logging.handlers
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import config

ROOT_LOGGER_NAME = "promptforge"


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data
        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for human readability."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so other handlers still see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    console: bool = True,
    json_logs: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); defaults to LOG_LEVEL,
               or DEBUG when the DEBUG environment flag is set
        log_dir: Directory for log files (defaults to config.LOG_DIR)
        console: Enable console output
        json_logs: Enable JSON structured logs
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep

    Returns:
        Root logger for the project
    """
    level = level or ("DEBUG" if config.DEBUG else config.LOG_LEVEL)
    log_dir = log_dir or config.LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in list(root_logger.handlers):
        handler.close()
    root_logger.handlers.clear()

    # Console handler with colors
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        if sys.stdout.isatty():
            fmt: logging.Formatter = ColoredFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        else:
            fmt = logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        console_handler.setFormatter(fmt)
        root_logger.addHandler(console_handler)

    # Rotating file handler (human-readable)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "promptforge.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(lineno)d | %(message)s"
        )
    )
    root_logger.addHandler(file_handler)

    # JSON structured logs
    if json_logs:
        json_handler = logging.handlers.RotatingFileHandler(
            log_dir / "promptforge.json.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(json_handler)

    # Error-only log
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "promptforge.error.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d\n"
            "%(message)s\n---"
        )
    )
    root_logger.addHandler(error_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
