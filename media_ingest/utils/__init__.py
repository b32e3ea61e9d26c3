"""Utility modules - provide common utility functions and classes."""
from media_ingest.utils.file_utils import (
    close_stream,
    ensure_directory,
    is_safe_object_key,
    is_valid_filename,
)
from media_ingest.utils.logger import configure_logging, get_logger, setup_logger

__all__ = [
    "close_stream",
    "ensure_directory",
    "is_valid_filename",
    "is_safe_object_key",
    "setup_logger",
    "configure_logging",
    "get_logger",
]
