"""MinIO implementation of the durable storage backend."""
import asyncio
import functools
import io
import logging
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Optional

from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error

from media_ingest.core.config import MinioConfig
from media_ingest.core.exceptions import StorageException
from media_ingest.utils.file_utils import close_stream
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class AsyncIteratorReader(io.RawIOBase):
    """
    Blocking file-like view over an async byte iterator.

    The MinIO SDK reads its input synchronously from a worker thread; each
    ``read`` schedules the next ``__anext__`` on the owning event loop and
    waits for it, so only the blocks needed for the current part are held.
    """

    def __init__(self, stream: AsyncIterator[bytes], loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._stream = stream
        self._loop = loop
        self._buffer = bytearray()
        self._exhausted = False
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    async def _next_block(self) -> Optional[bytes]:
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            return None

    def _fill(self, size: int) -> None:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            block = asyncio.run_coroutine_threadsafe(self._next_block(), self._loop).result()
            if block is None:
                self._exhausted = True
            else:
                self._buffer.extend(block)

    def read(self, size: int = -1) -> bytes:
        self._fill(size)
        if size < 0 or size > len(self._buffer):
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        self.bytes_read += len(data)
        return data


class MinioStorageBackend:
    """Stores objects in a MinIO (S3 compatible) bucket."""

    def __init__(self, config: MinioConfig, client: Optional[Minio] = None):
        logger.info(f"Initializing MinIO storage backend for bucket '{config.bucket_name}'")
        self.config = config
        self.bucket_name = config.bucket_name
        self.part_size = config.part_size
        self.client = client or Minio(
            config.endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
            secure=config.secure
        )

    async def _run(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking SDK call in the default executor, mapping S3 errors."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except S3Error as e:
            raise StorageException(
                f"MinIO {operation} failed: {e.code}",
                operation=operation,
                details={"bucket": self.bucket_name, "code": e.code},
                original_error=e
            ) from e

    async def ensure_bucket(self) -> None:
        """Create the target bucket if it does not already exist."""
        exists = await self._run("bucket_exists", self.client.bucket_exists, self.bucket_name)
        if not exists:
            logger.info(f"Creating MinIO bucket: {self.bucket_name}")
            await self._run("make_bucket", self.client.make_bucket, self.bucket_name)
        else:
            logger.info(f"Bucket '{self.bucket_name}' already exists")

    async def put(self, path: str, data: bytes) -> None:
        await self._run(
            "put",
            self.client.put_object,
            self.bucket_name,
            path,
            io.BytesIO(data),
            length=len(data)
        )

    async def put_stream(self, path: str, stream: AsyncIterator[bytes]) -> int:
        reader = AsyncIteratorReader(stream, asyncio.get_running_loop())
        try:
            await self._run(
                "put_stream",
                self.client.put_object,
                self.bucket_name,
                path,
                reader,
                length=-1,
                part_size=self.part_size
            )
        finally:
            await close_stream(stream)
        logger.info(f"Streamed {reader.bytes_read} bytes into {self.bucket_name}/{path}")
        return reader.bytes_read

    async def get(self, path: str) -> bytes:

        def read_object() -> bytes:
            response = self.client.get_object(self.bucket_name, path)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        return await self._run("get", read_object)

    async def delete(self, path: str) -> None:
        await self._run("delete", self.client.remove_object, self.bucket_name, path)

    async def exists(self, path: str) -> bool:
        try:
            await self._run("stat", self.client.stat_object, self.bucket_name, path)
            return True
        except StorageException as e:
            if e.details.get("code") in ("NoSuchKey", "NoSuchObject", "NotFound"):
                return False
            raise

    async def url(self, path: str) -> str:
        return await self._run(
            "presign",
            self.client.presigned_get_object,
            self.bucket_name,
            path,
            expires=timedelta(hours=self.config.presigned_url_expiry_hours)
        )

    async def move(self, source: str, destination: str) -> None:
        await self._run(
            "copy",
            self.client.copy_object,
            self.bucket_name,
            destination,
            CopySource(self.bucket_name, source)
        )
        await self._run("delete", self.client.remove_object, self.bucket_name, source)
