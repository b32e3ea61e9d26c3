"""Service modules for business logic."""
from media_ingest.services.chunk_store import LocalChunkStore, StagedChunk
from media_ingest.services.job_registry import FinalizeJobRegistry
from media_ingest.services.local_storage import LocalStorageBackend
from media_ingest.services.minio_service import MinioStorageBackend
from media_ingest.services.progress import (
    CompositeProgressObserver,
    LoggingProgressObserver,
    RedisProgressPublisher,
)
from media_ingest.services.reassembly_service import ReassemblyService
from media_ingest.services.redis_service import RedisSessionRepository
from media_ingest.services.session_registry import InMemorySessionRepository
from media_ingest.services.storage_writer import RetryableStorageWriter
from media_ingest.services.upload_service import UploadService

__all__ = [
    "LocalChunkStore",
    "StagedChunk",
    "LocalStorageBackend",
    "MinioStorageBackend",
    "RetryableStorageWriter",
    "InMemorySessionRepository",
    "FinalizeJobRegistry",
    "RedisSessionRepository",
    "ReassemblyService",
    "LoggingProgressObserver",
    "RedisProgressPublisher",
    "CompositeProgressObserver",
    "UploadService",
]
