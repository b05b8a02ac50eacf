"""
Configure logging for the application.

This module provides a consistent logging configuration across the relay,
the registry and the notification hub. Records go to stdout and to a rotating
log file; with ``LOG_FORMAT=json`` each record is rendered by structlog as one
JSON object per line so it can be shipped to a log aggregator unchanged.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

from concierge_relay.config.constants import LOGGER_NAME

# Log levels
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Log file configuration
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_FILE_NAME = "concierge_relay.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Formatter that renders stdlib records as structlog JSON lines."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )


def configure_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the application logger with console and file handlers.

    Args:
        level: Log level name; defaults to the LOG_LEVEL environment variable
        log_format: "text" or "json"; defaults to the LOG_FORMAT environment variable
        log_dir: Directory for the rotating log file; defaults to LOG_DIR

    Returns:
        logging.Logger: The configured logger instance
    """
    level_name = (level or LOG_LEVEL).upper()
    fmt = (log_format or os.getenv("LOG_FORMAT", "text")).lower()
    directory = Path(log_dir) if log_dir is not None else LOG_DIR

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Remove existing handlers if any
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if fmt == "json":
        formatter: logging.Formatter = json_formatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    try:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            directory / LOG_FILE_NAME,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Could not set up file logging: {e}")

    # Prevent log propagation to root logger
    logger.propagate = False

    logger.info("Logging configured")
    return logger
