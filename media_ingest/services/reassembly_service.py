"""Ordered, bounded-memory reassembly of staged chunks into durable storage."""
import hashlib
import logging
from typing import AsyncIterator, Optional

from media_ingest.core.exceptions import ChunkNotFoundException, ChunkReadException
from media_ingest.core.service_protocols import ChunkStore, StorageBackend
from media_ingest.core.types import AssemblyResult
from media_ingest.services.storage_writer import RetryableStorageWriter
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


def partial_key(target_path: str, upload_id: str) -> str:
    """Temporary key the stream is written to before promotion."""
    return f"{target_path}.{upload_id}.partial"


class ReassemblyService:
    """
    Streams chunks ``1..total_chunks`` in order into the storage backend.

    Only one chunk is held in memory at a time. The output is written to
    :func:`partial_key` and moved onto the target path once the whole stream
    has been stored, so the target never holds a truncated file.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        backend: StorageBackend,
        writer: Optional[RetryableStorageWriter] = None
    ):
        self.chunk_store = chunk_store
        self.backend = backend
        self.writer = writer or RetryableStorageWriter()

    async def iter_chunks(self, upload_id: str, total_chunks: int, digest=None) -> AsyncIterator[bytes]:
        """
        Yield chunk bytes in ascending index order.

        Args:
            upload_id: Upload whose chunks are read.
            total_chunks: Highest index to read.
            digest: Optional hashlib object updated with every chunk.

        Raises:
            ChunkReadException: a chunk is missing or unreadable.
        """
        for index in range(1, total_chunks + 1):
            try:
                data = await self.chunk_store.get(upload_id, index)
            except ChunkNotFoundException as e:
                raise ChunkReadException(upload_id, index, original_error=e) from e
            except OSError as e:
                raise ChunkReadException(upload_id, index, original_error=e) from e

            if digest is not None:
                digest.update(data)
            yield data

    async def assemble(self, upload_id: str, total_chunks: int, target_path: str) -> AssemblyResult:
        """
        Reassemble an upload at ``target_path``.

        Returns:
            AssemblyResult with the stored size, SHA-256 and URL.
        """
        temp_key = partial_key(target_path, upload_id)
        digest = hashlib.sha256()

        def stream_factory() -> AsyncIterator[bytes]:
            nonlocal digest
            digest = hashlib.sha256()
            return self.iter_chunks(upload_id, total_chunks, digest)

        logger.info(f"Reassembling {total_chunks} chunks of {upload_id} into {target_path}")
        try:
            size = await self.writer.put_stream(self.backend, temp_key, stream_factory)
        except ChunkReadException as e:
            logger.error(
                f"Reassembly of {upload_id} aborted at chunk {e.index}; "
                f"partial object left at {temp_key}"
            )
            raise
        except Exception:
            logger.error(f"Reassembly of {upload_id} failed; partial object may remain at {temp_key}")
            raise

        await self.writer.move(self.backend, temp_key, target_path)
        url = await self.backend.url(target_path)

        logger.info(f"Reassembled {upload_id} into {target_path} ({size} bytes)")
        return AssemblyResult(path=target_path, size=size, checksum=digest.hexdigest(), url=url)
