"""Service factory wiring the upload engine from settings."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from redis.asyncio.client import Redis

from media_ingest.core.config import Settings
from media_ingest.core.exceptions import ConfigurationException
from media_ingest.core.service_protocols import ProgressObserver, SessionRepository, StorageBackend
from media_ingest.services.chunk_store import LocalChunkStore
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
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything the application holds for its lifetime."""
    upload_service: UploadService
    repository: SessionRepository
    backend: StorageBackend
    observer: CompositeProgressObserver
    progress_channel_prefix: Optional[str] = None
    publisher: Optional[RedisProgressPublisher] = None
    started: bool = False

    async def start(self) -> None:
        """Open connections and start background work."""
        for resource in (self.repository, self.backend):
            if isinstance(resource, RedisSessionRepository):
                await resource.connect()
                if self.progress_channel_prefix and self.publisher is None:
                    self.publisher = RedisProgressPublisher(resource.redis, self.progress_channel_prefix)
                    self.observer.attach(self.publisher)
            elif isinstance(resource, MinioStorageBackend):
                await resource.ensure_bucket()

        upload_config = self.upload_service.config
        if upload_config.enable_stale_sweeper:
            self.upload_service.start_sweeper()
        self.started = True
        logger.info("Upload services started")

    async def close(self) -> None:
        await self.upload_service.stop_sweeper()
        await self.upload_service.stop_finalize_jobs()
        if self.publisher is not None:
            self.observer.detach(self.publisher)
            self.publisher = None
        if isinstance(self.repository, RedisSessionRepository):
            await self.repository.disconnect()
        self.started = False
        logger.info("Upload services stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "session_backend": type(self.repository).__name__,
            "storage_backend": type(self.backend).__name__,
            "observers": [type(o).__name__ for o in self.observer.observers],
            "active_finalize_jobs": len(self.upload_service.get_active_jobs()),
            "started": self.started,
        }


class UploadServiceFactory:
    """Builds the upload engine components selected by :class:`Settings`."""

    def __init__(self, settings: Settings, redis_client: Optional[Redis] = None):
        self.settings = settings
        self.redis_client = redis_client

    def create_writer(self) -> RetryableStorageWriter:
        storage_config = self.settings.get_storage_config()
        return RetryableStorageWriter(
            max_attempts=storage_config.retry_attempts,
            base_delay=storage_config.retry_base_delay
        )

    def create_session_repository(self) -> SessionRepository:
        backend = self.settings.session_backend
        if backend == "memory":
            return InMemorySessionRepository()
        if backend == "redis":
            return RedisSessionRepository(self.settings.get_redis_config(), client=self.redis_client)
        raise ConfigurationException(f"Unknown session backend: {backend}", config_key="session_backend")

    def create_storage_backend(self) -> StorageBackend:
        storage_config = self.settings.get_storage_config()
        if storage_config.backend == "local":
            return LocalStorageBackend(storage_config.root, storage_config.public_base_url)
        if storage_config.backend == "minio":
            return MinioStorageBackend(self.settings.get_minio_config())
        raise ConfigurationException(
            f"Unknown storage backend: {storage_config.backend}",
            config_key="storage_backend"
        )

    def create_observer(self) -> CompositeProgressObserver:
        """Logging observer, plus the Redis publisher when a client was supplied."""
        observers: List[ProgressObserver] = [LoggingProgressObserver()]
        if self.settings.enable_progress_publisher and self.redis_client is not None:
            observers.append(RedisProgressPublisher(self.redis_client, self.settings.progress_channel_prefix))
        return CompositeProgressObserver(observers)

    def build(self) -> ServiceContainer:
        writer = self.create_writer()
        repository = self.create_session_repository()
        backend = self.create_storage_backend()
        upload_config = self.settings.get_upload_config()
        chunk_store = LocalChunkStore(upload_config.staging_dir, writer=writer)
        reassembly = ReassemblyService(chunk_store, backend, writer=writer)
        observer = self.create_observer()

        service = UploadService(
            repository=repository,
            chunk_store=chunk_store,
            reassembly=reassembly,
            config=upload_config,
            observer=observer
        )
        logger.info(
            f"Built upload services: sessions={self.settings.session_backend}, "
            f"storage={self.settings.storage_backend}"
        )
        return ServiceContainer(
            upload_service=service,
            repository=repository,
            backend=backend,
            observer=observer,
            progress_channel_prefix=self._deferred_channel_prefix(repository)
        )

    def _deferred_channel_prefix(self, repository: SessionRepository) -> Optional[str]:
        # The repository's own client only exists after connect()
        if (
            self.settings.enable_progress_publisher
            and self.redis_client is None
            and isinstance(repository, RedisSessionRepository)
        ):
            return self.settings.progress_channel_prefix
        if self.settings.enable_progress_publisher and self.redis_client is None:
            logger.warning("Progress publisher enabled without a Redis session backend; skipping")
        return None
