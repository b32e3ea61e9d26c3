"""Staging area for uploaded chunks, one directory per upload."""
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os

from media_ingest.core.exceptions import ChunkNotFoundException, ValidationException
from media_ingest.services.storage_writer import RetryableStorageWriter
from media_ingest.utils.file_utils import ensure_directory, is_valid_filename
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass
class StagedChunk:
    """A chunk written to a temporary file but not yet visible under its index."""
    upload_id: str
    index: int
    temp_path: Path
    size: int


class LocalChunkStore:
    """
    Chunk staging on the local filesystem.

    Layout: ``{staging_dir}/{upload_id}/chunk_{index}``. Writes land in a
    uniquely named ``.tmp`` file first and are renamed into place, so a
    chunk file is either absent or complete.
    """

    def __init__(self, staging_dir: Union[str, Path], writer: Optional[RetryableStorageWriter] = None):
        self.staging_dir = ensure_directory(staging_dir).resolve()
        self.writer = writer or RetryableStorageWriter()

    def upload_dir(self, upload_id: str) -> Path:
        if not is_valid_filename(upload_id):
            raise ValidationException(f"Invalid upload id: {upload_id}", field="upload_id")
        return self.staging_dir / upload_id

    def chunk_path(self, upload_id: str, index: int) -> Path:
        return self.upload_dir(upload_id) / f"chunk_{index}"

    async def _write_file(self, path: Path, data: bytes) -> None:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

    async def _read_file(self, upload_id: str, index: int) -> bytes:
        try:
            async with aiofiles.open(self.chunk_path(upload_id, index), "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise ChunkNotFoundException(upload_id, index) from None

    async def stage(self, upload_id: str, index: int, data: bytes) -> StagedChunk:
        """Write ``data`` to a temporary file in the upload's directory."""
        temp_path = self.upload_dir(upload_id) / f"chunk_{index}.{uuid.uuid4().hex}.tmp"
        await self.writer.call(f"stage chunk {upload_id}:{index}", self._write_file, temp_path, data)
        return StagedChunk(upload_id=upload_id, index=index, temp_path=temp_path, size=len(data))

    async def commit(self, staged: StagedChunk) -> None:
        """Atomically publish a staged chunk under its index."""
        await aiofiles.os.replace(staged.temp_path, self.chunk_path(staged.upload_id, staged.index))
        logger.debug(f"Chunk {staged.index} committed for upload {staged.upload_id} ({staged.size} bytes)")

    async def discard(self, staged: StagedChunk) -> None:
        try:
            await aiofiles.os.remove(staged.temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to discard staged chunk {staged.temp_path}: {e}")

    async def put(self, upload_id: str, index: int, data: bytes) -> None:
        staged = await self.stage(upload_id, index, data)
        await self.commit(staged)

    async def get(self, upload_id: str, index: int) -> bytes:
        return await self.writer.call(f"read chunk {upload_id}:{index}", self._read_file, upload_id, index)

    async def exists(self, upload_id: str, index: int) -> bool:
        return await aiofiles.os.path.isfile(self.chunk_path(upload_id, index))

    async def delete_all(self, upload_id: str) -> int:
        """
        Remove every staged file of an upload, then its directory.

        Individual failures are logged and skipped; never raises.

        Returns:
            Number of files removed.
        """
        try:
            directory = self.upload_dir(upload_id)
        except ValidationException:
            return 0

        if not await aiofiles.os.path.isdir(directory):
            return 0

        removed = 0
        for name in await aiofiles.os.listdir(directory):
            try:
                await aiofiles.os.remove(directory / name)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to delete staged file {name} for upload {upload_id}: {e}")

        try:
            await aiofiles.os.rmdir(directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging directory for upload {upload_id}: {e}")

        logger.info(f"Removed {removed} staged files for upload {upload_id}")
        return removed
