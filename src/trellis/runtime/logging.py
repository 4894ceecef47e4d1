"""
Trellis Logging Infrastructure.

Provides:
- Console output for human monitoring
- JSONL file output to .trellis/logs/ for agents and log shippers
- Structured context on every record via ``log_with_context``

Log Format Design:
- Primary file: .trellis/logs/trellis.log (JSONL)
- Each line is a complete JSON object with timestamp, level, component,
  message and optional structured context
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from trellis.core.config import LoggingConfig

ROOT_LOGGER = "trellis"
LOG_FILENAME = "trellis.log"

# =============================================================================
# Terminal Colors (respects NO_COLOR)
# =============================================================================

_NO_COLOR = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "" if _NO_COLOR else "\033[0m"
    DIM = "" if _NO_COLOR else "\033[2m"

    DEBUG = "" if _NO_COLOR else "\033[36m"  # Cyan
    INFO = "" if _NO_COLOR else "\033[32m"  # Green
    WARNING = "" if _NO_COLOR else "\033[33m"  # Yellow
    ERROR = "" if _NO_COLOR else "\033[31m"  # Red
    CRITICAL = "" if _NO_COLOR else "\033[35m"  # Magenta

    COMPONENT = "" if _NO_COLOR else "\033[34m"  # Blue


# =============================================================================
# JSONL Formatter
# =============================================================================


def _component_for(record: logging.LogRecord) -> str:
    component = getattr(record, "component", None)
    if component:
        return str(component)
    # trellis.runtime.query_client -> query_client
    return record.name.rsplit(".", 1)[-1]


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Example output:
    {"timestamp":"2024-01-15T10:30:45.123+00:00","level":"WARNING","component":"context","message":"Unknown context namespace","context":{"param":"city","token":"$$CITY.NAME"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": _component_for(record),
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            source_info: dict[str, Any] = {}
            if record.pathname:
                source_info["file"] = record.pathname
            if record.lineno:
                source_info["line"] = record.lineno
            if record.funcName and record.funcName != "<module>":
                source_info["function"] = record.funcName
            if source_info:
                entry["source"] = source_info

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.INFO: Colors.INFO,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        component = _component_for(record)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level_color = self.LEVEL_COLORS.get(record.levelno, "")

        if _NO_COLOR:
            prefix = f"[{timestamp}] [{component}]"
        else:
            prefix = (
                f"{Colors.DIM}{timestamp}{Colors.RESET} "
                f"{Colors.COMPONENT}[{component}]{Colors.RESET}"
            )

        if record.levelno != logging.INFO:
            level_name = record.levelname
            if not _NO_COLOR:
                level_name = f"{level_color}{level_name}{Colors.RESET}"
            prefix = f"{prefix} {level_name}:"

        message = f"{prefix} {record.getMessage()}"
        context = getattr(record, "context", None)
        if context:
            message += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return message


# =============================================================================
# Logger Setup
# =============================================================================

_log_dir: Path | None = None


def setup_logging(
    log_dir: Path | str = ".trellis/logs",
    level: int | str = logging.INFO,
    jsonl: bool = True,
    console: bool = True,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> Path | None:
    """
    Initialize the logging infrastructure on the ``trellis`` logger.

    Args:
        log_dir: Directory for the JSONL log file
        level: Minimum log level (int or level name)
        jsonl: Write the rotating JSONL file
        console: Write human-readable lines to stderr
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Path to the log directory, or None when no file is written
    """
    global _log_dir

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(ConsoleFormatter())
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)

    _log_dir = None
    if jsonl:
        _log_dir = Path(log_dir)
        _log_dir.mkdir(parents=True, exist_ok=True)
        log_file = _log_dir / LOG_FILENAME
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONLFormatter())
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

        log_with_context(
            root_logger,
            logging.DEBUG,
            "Trellis logging initialized",
            log_format="jsonl",
            log_file=str(log_file),
        )

    return _log_dir


def setup_logging_from_config(config: LoggingConfig, console: bool = True) -> Path | None:
    """Initialize logging from the ``[trellis.logging]`` config section."""
    return setup_logging(
        log_dir=config.log_dir,
        level=config.level,
        jsonl=config.jsonl,
        console=console,
    )


# =============================================================================
# Contextual Logging
# =============================================================================


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """
    Log a message with structured context data.

    Args:
        logger: Logger instance
        level: Logging level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable message
        context: Structured context data (included in JSONL output)
        **kwargs: Additional context items
    """
    extra = {"context": {**(context or {}), **kwargs}} if (context or kwargs) else {}
    logger.log(level, message, extra=extra)


def get_log_file() -> Path | None:
    """Get the path to the JSONL log file, if logging was set up with one."""
    if _log_dir:
        return _log_dir / LOG_FILENAME
    return None
