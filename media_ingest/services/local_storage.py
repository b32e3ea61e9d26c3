"""Local filesystem implementation of the durable storage backend."""
import logging
from pathlib import Path
from typing import AsyncIterator, Union

import aiofiles
import aiofiles.os

from media_ingest.core.exceptions import StorageException, ValidationException
from media_ingest.utils.file_utils import close_stream, ensure_directory, is_safe_object_key
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class LocalStorageBackend:
    """Stores objects as files below a root directory."""

    def __init__(self, root: Union[str, Path], public_base_url: str = "/uploads"):
        self.root = ensure_directory(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        logger.info(f"Local storage backend rooted at {self.root}")

    def _resolve(self, path: str) -> Path:
        """Map an object key onto the filesystem, refusing keys that escape the root."""
        if not is_safe_object_key(path):
            raise ValidationException(f"Invalid storage path: {path}", field="path")
        return self.root / path

    async def put(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)

    async def put_stream(self, path: str, stream: AsyncIterator[bytes]) -> int:
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        written = 0
        try:
            async with aiofiles.open(target, "wb") as f:
                async for block in stream:
                    await f.write(block)
                    written += len(block)
        finally:
            await close_stream(stream)

        logger.debug(f"Streamed {written} bytes into {path}")
        return written

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageException(
                f"Object not found: {path}",
                operation="get",
                details={"path": path},
                original_error=e
            ) from e

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            pass

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(path))

    async def url(self, path: str) -> str:
        self._resolve(path)
        return f"{self.public_base_url}/{path}"

    async def move(self, source: str, destination: str) -> None:
        src = self._resolve(source)
        dst = self._resolve(destination)
        await aiofiles.os.makedirs(dst.parent, exist_ok=True)
        await aiofiles.os.replace(src, dst)
