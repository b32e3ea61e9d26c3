"""
Logging configuration with rotating file handlers.

Handlers live on the package logger ``media_ingest``; module loggers obtained
through :func:`get_logger` propagate to it.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from media_ingest.core.config import LoggingConfig

ROOT_LOGGER_NAME = "media_ingest"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOG_DIR = os.getenv("INGEST_LOG_DIR", "logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 10


def _level_from_env() -> int:
    level = logging.getLevelName(os.getenv("INGEST_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(
    level: Optional[int] = None,
    log_dir: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT
) -> logging.Logger:
    """
    (Re)configure the package logger with console and rotating file handlers.

    Args:
        level: Logging level; ``INGEST_LOG_LEVEL`` when omitted.
        log_dir: Directory for ``media_ingest.log`` and ``error.log``.
        max_bytes: Rotation size per file.
        backup_count: Rotated files to keep.

    Returns:
        The package logger.
    """
    level = _level_from_env() if level is None else level
    logs_dir = Path(log_dir or DEFAULT_LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    file_handler = RotatingFileHandler(
        logs_dir / "media_ingest.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(level)

    # Errors are duplicated into their own file
    error_handler = RotatingFileHandler(
        logs_dir / "error.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    error_handler.setLevel(logging.ERROR)

    for handler in (console_handler, file_handler, error_handler):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_logging(config: "LoggingConfig") -> logging.Logger:
    """Apply the logging section of the settings."""
    return setup_logger(
        level=logging.getLevelName(config.level.value),
        log_dir=config.log_dir,
        max_bytes=config.max_file_size,
        backup_count=config.backup_count
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger below the package logger.

    Names outside the ``media_ingest`` namespace are nested under it so that
    scripts share the same handlers.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger()

    if not name or name == ROOT_LOGGER_NAME:
        return root
    if not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
