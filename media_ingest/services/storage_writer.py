"""Bounded retry with linear backoff around single storage calls."""
import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Tuple, Type

from media_ingest.core.exceptions import ChunkNotFoundException, ChunkReadException
from media_ingest.core.service_protocols import StorageBackend
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

DEFAULT_NON_RETRYABLE: Tuple[Type[BaseException], ...] = (ChunkReadException, ChunkNotFoundException)


class RetryableStorageWriter:
    """
    Retry wrapper for storage backend calls.

    Each call is attempted up to ``max_attempts`` times. Between attempts the
    writer sleeps ``attempt * base_delay`` seconds. When attempts run out the
    last exception propagates unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        non_retryable: Tuple[Type[BaseException], ...] = DEFAULT_NON_RETRYABLE,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.non_retryable = non_retryable
        self._sleep = sleep or asyncio.sleep

    async def call(self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await ``func(*args, **kwargs)`` with retries.

        Args:
            operation: Label used in log messages.
            func: Coroutine function performing exactly one storage call.

        Returns:
            Whatever ``func`` returns on the first successful attempt.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.non_retryable:
                raise
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(f"Storage operation '{operation}' failed after {attempt} attempts: {e}")
                    raise

                wait_time = attempt * self.base_delay
                logger.warning(
                    f"Storage operation '{operation}' attempt {attempt} failed, retrying in {wait_time:.2f}s: {e}"
                )
                await self._sleep(wait_time)

    async def put(self, backend: StorageBackend, path: str, data: bytes) -> None:
        await self.call(f"put {path}", backend.put, path, data)

    async def put_stream(
        self,
        backend: StorageBackend,
        path: str,
        stream_factory: Callable[[], AsyncIterator[bytes]]
    ) -> int:
        """Streamed put; every attempt pulls a fresh stream from ``stream_factory``."""

        async def attempt() -> int:
            return await backend.put_stream(path, stream_factory())

        return await self.call(f"put_stream {path}", attempt)

    async def get(self, backend: StorageBackend, path: str) -> bytes:
        return await self.call(f"get {path}", backend.get, path)

    async def delete(self, backend: StorageBackend, path: str) -> None:
        await self.call(f"delete {path}", backend.delete, path)

    async def move(self, backend: StorageBackend, source: str, destination: str) -> None:
        await self.call(f"move {source}", backend.move, source, destination)
