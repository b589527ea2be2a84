"""Centralized logging configuration for claude-proxy.

It supports both console (text) and file (JSON optional) output.

Usage:
    from claude_proxy.core.logging_config import configure_logging

    # Configure once at application startup
    configure_logging(level="DEBUG", format="json")

Environment Variables:
    CLAUDE_PROXY_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    CLAUDE_PROXY_LOG_FORMAT: Output format ("text" or "json")
    CLAUDE_PROXY_LOG_FILE: Optional log file path
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Literal

# Default format for text output
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TEXT_FORMAT_WITH_MS = "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Attributes every LogRecord has; anything else came in via ``extra=``
_STANDARD_ATTRS = frozenset(
    {
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
)

# Track if logging has been configured
_configured = False


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Outputs logs as JSON objects with consistent structure:
    {
        "timestamp": "2025-12-28T14:30:00.123",
        "level": "INFO",
        "logger": "claude_proxy.gateway.router",
        "message": "[00001_...] Routing to ollama (ollama): ...",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str | None = None,
    format: Literal["text", "json"] | None = None,
    file_path: str | None = None,
    include_ms: bool = True,
    force: bool = False,
) -> None:
    """Configure logging for the application.

    This should be called once at application startup. Subsequent calls
    are ignored unless force=True.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to CLAUDE_PROXY_LOG_LEVEL or "INFO".
        format: Output format. Defaults to CLAUDE_PROXY_LOG_FORMAT or "text".
        file_path: Optional file path. Defaults to CLAUDE_PROXY_LOG_FILE.
        include_ms: Include milliseconds in timestamp.
        force: Force reconfiguration even if already configured.

    Raises:
        ValueError: If the level is not a known log level.
    """
    global _configured
    if _configured and not force:
        return

    level = (level or os.environ.get("CLAUDE_PROXY_LOG_LEVEL", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")
    format = format or os.environ.get("CLAUDE_PROXY_LOG_FORMAT", "text")  # type: ignore[assignment]
    file_path = file_path or os.environ.get("CLAUDE_PROXY_LOG_FILE")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))
    root_logger.handlers.clear()

    if format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        fmt = TEXT_FORMAT_WITH_MS if include_ms else TEXT_FORMAT
        formatter = logging.Formatter(fmt, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # aiohttp's access log duplicates the per-request trace lines
    logging.getLogger("aiohttp.access").setLevel(
        logging.DEBUG if level == "DEBUG" else logging.WARNING
    )

    _configured = True
