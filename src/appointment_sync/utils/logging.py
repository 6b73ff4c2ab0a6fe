"""Logging setup for the sync engine and its CLI."""

import logging
import sys
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

LOGGER_NAME = "appointment_sync"

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s"

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).strip().upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {name!r}")
    return level


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure the package logger.

    Calling it again replaces the handlers from the previous call, so the CLI
    and tests can reconfigure freely. Request logs from the HTTP clients are
    kept at WARNING unless ``level`` is DEBUG.

    Args:
        level: Level name, e.g. DEBUG or INFO (case-insensitive)
        log_file: Optional file that receives everything at DEBUG, UTF-8 encoded

    Returns:
        The ``appointment_sync`` logger

    Raises:
        ConfigurationError: If ``level`` is not a known level name
    """
    numeric = _level(level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else numeric)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING)

    return logger
