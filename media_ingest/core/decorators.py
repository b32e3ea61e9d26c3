"""Decorators for error logging and latency monitoring of service coroutines."""
import logging
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from media_ingest.core.exceptions import ErrorSeverity, IngestException
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

AsyncF = TypeVar('AsyncF', bound=Callable[..., Awaitable[Any]])

# Client-side failures; anything more severe is logged as an error
_WARNING_SEVERITIES = (ErrorSeverity.LOW, ErrorSeverity.MEDIUM)


def _describe(value: Any, limit: int = 200) -> str:
    text = str(value)
    return text[:limit] + "..." if len(text) > limit else text


def log_exception(operation: str, error: Exception) -> None:
    """Log ``error`` at a level matching its severity."""
    if isinstance(error, IngestException):
        log = logger.warning if error.severity in _WARNING_SEVERITIES else logger.error
        log(
            f"{operation} failed: [{error.error_code}] {error.message}",
            extra={"error_details": error.to_dict()}
        )
    else:
        logger.error(f"{operation} failed: {error}", exc_info=True)


def async_exception_handler(func: Optional[AsyncF] = None, *, operation: Optional[str] = None):
    """
    Log exceptions escaping a coroutine, then re-raise them unchanged.

    Usable as ``@async_exception_handler`` or
    ``@async_exception_handler(operation="upload.cancel")``.
    """

    def decorator(fn: AsyncF) -> AsyncF:
        label = operation or fn.__qualname__

        @wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                log_exception(label, e)
                raise

        return wrapper  # type: ignore

    if func is not None:
        return decorator(func)
    return decorator


def async_performance_monitor(
    operation_name: Optional[str] = None,
    slow_threshold: float = 1.0,
    include_args: bool = False
):
    """
    Measure coroutine latency and flag slow calls.

    Args:
        operation_name: Label for the monitored operation.
        slow_threshold: Seconds beyond which the call is logged as slow.
        include_args: Attach truncated arguments to the log payload.
    """

    def decorator(func: AsyncF) -> AsyncF:
        op_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = time.perf_counter() - start_time
                logger.info(f"Async operation failed: {op_name} in {elapsed:.2f}s ({type(e).__name__})")
                raise

            elapsed = time.perf_counter() - start_time
            log_info = {"operation": op_name, "execution_time": round(elapsed, 4)}
            if include_args:
                log_info["args"] = _describe(args)
                log_info["kwargs"] = _describe(kwargs)

            if elapsed > slow_threshold:
                logger.warning(f"Slow async operation detected: {log_info}")
            else:
                logger.debug(f"Async operation completed: {log_info}")
            return result

        return wrapper  # type: ignore

    return decorator
