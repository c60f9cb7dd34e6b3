"""Logging configuration for the MCP Bridge."""

import logging
import logging.config
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

LOG_DIR = Path(__file__).parent.parent / "logs"

# The front server speaks JSON-RPC on stdout unless it runs over HTTP.
STDIO_MODE = os.environ.get("BRIDGE_TRANSPORT", "stdio").lower() == "stdio"

# Configure structlog at import time so that logging emitted before
# setup_logging() runs never reaches stdout.
if STDIO_MODE:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,  # Allow reconfiguration later
    )

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "mcp")


def _console_handler(level: str, stdio_mode: bool) -> Dict[str, Any]:
    if stdio_mode:
        return {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "default",
            "stream": "ext://sys.stderr",
        }
    return {
        "class": "rich.logging.RichHandler",
        "level": level,
        "formatter": "default",
        "rich_tracebacks": True,
        "markup": False,
    }


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    stdio_mode: Optional[bool] = None,
) -> None:
    """
    Configure structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file name, created under ``logs/``
        stdio_mode: Keep stdout clean for JSON-RPC; defaults to the
            ``BRIDGE_TRANSPORT`` environment variable
    """
    if stdio_mode is None:
        stdio_mode = STDIO_MODE

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty() and not stdio_mode
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(message)s" if not stdio_mode else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": _console_handler(level, stdio_mode),
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        "loggers": {
            name: {"level": "WARNING", "handlers": ["console"], "propagate": False}
            for name in QUIET_LOGGERS
        },
    }

    if log_file:
        LOG_DIR.mkdir(exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "detailed",
            "filename": str(LOG_DIR / log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        logging_config["root"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)
