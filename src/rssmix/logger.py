"""
Logging configuration for rssmix.

All output goes through loguru. Records emitted by libraries on the standard
``logging`` module (APScheduler, httpx) are forwarded to the same sinks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

from rssmix.config import LoggingConfig

# Libraries whose per-request chatter stays out of INFO output
QUIET_LIBRARIES = ("httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        _logger.bind(name=record.name).opt(exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logger(
    log_config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
) -> None:
    """Configure console and file sinks from the logging section.

    Args:
        log_config: Logging section of the loaded configuration
        level: Level overriding log_config.level (e.g. from --log-level)
    """
    log_config = log_config or LoggingConfig()
    level = level or log_config.level

    _logger.remove()

    if log_config.console_enabled:
        _logger.add(
            sys.stderr,
            format=log_config.format,
            level=level,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    if log_config.file_enabled:
        log_path = Path(log_config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        _logger.add(
            str(log_path),
            format=log_config.format,
            level=level,
            rotation=log_config.rotation,
            retention=log_config.retention,
            compression="zip",
            encoding="utf-8",
            enqueue=True,  # stages may log from scheduler threads
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None):
    """Get a logger bound to a module name.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Logger instance
    """
    if name:
        return _logger.bind(name=name)
    return _logger


logger = _logger

__all__ = [
    "InterceptHandler",
    "setup_logger",
    "get_logger",
    "logger",
]
