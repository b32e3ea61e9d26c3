"""Utility functions for file operations"""
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Union


def ensure_directory(path: Union[str, Path], mode: int = 0o755) -> Path:
    """
    Ensure directory exists; create if it doesn't

    Args:
        path: Directory path
        mode: Directory permission mode

    Returns:
        Path: Created directory path
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True, mode=mode)
    return path


def is_valid_filename(filename: str) -> bool:
    """Check if filename is valid (no invalid characters)"""
    if not filename or filename.startswith('.'):
        return False

    invalid_chars = ['/', '\\', ':', '*', '?', '"', '<', '>', '|', '\x00']
    return not any(char in filename for char in invalid_chars)


def is_safe_object_key(key: str) -> bool:
    """
    Check that a storage key is relative and cannot escape its root.

    Every ``/``-separated segment must be a valid filename, so ``..``,
    absolute paths and backslashes are rejected.
    """
    if not key or key.startswith('/') or '\\' in key:
        return False

    parts = PurePosixPath(key).parts
    return bool(parts) and all(is_valid_filename(part) for part in parts)


async def close_stream(stream: AsyncIterator[bytes]) -> None:
    """Close an async generator that may have been abandoned mid-iteration."""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
