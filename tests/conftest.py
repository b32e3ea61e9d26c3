"""Shared fixtures for the upload engine tests."""
from pathlib import Path
from typing import List

import pytest

from media_ingest.core.config import UploadConfig
from media_ingest.services.chunk_store import LocalChunkStore
from media_ingest.services.local_storage import LocalStorageBackend
from media_ingest.services.reassembly_service import ReassemblyService
from media_ingest.services.session_registry import InMemorySessionRepository
from media_ingest.services.storage_writer import RetryableStorageWriter
from media_ingest.services.upload_service import UploadService

CHUNK_SIZE = 4


async def no_sleep(_seconds: float) -> None:
    return None


def split_chunks(data: bytes, size: int = CHUNK_SIZE) -> List[bytes]:
    """Split ``data`` the way a client would; an empty file is one empty chunk."""
    if not data:
        return [b""]
    return [data[i:i + size] for i in range(0, len(data), size)]


class RecordingObserver:
    """Collects every event it is notified of."""

    def __init__(self):
        self.events = []

    async def notify(self, upload_id, event):
        self.events.append((upload_id, event))


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    return tmp_path / "staging"


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "storage"


@pytest.fixture
def upload_config(staging_dir: Path) -> UploadConfig:
    return UploadConfig(
        max_file_size=1024,
        chunk_size=CHUNK_SIZE,
        staging_dir=str(staging_dir),
        allowed_mime_types=["video/mp4", "image/png", "application/pdf"],
        stale_session_max_age_hours=24.0,
        stale_sweep_interval_seconds=3600.0,
        enable_stale_sweeper=False
    )


@pytest.fixture
def writer() -> RetryableStorageWriter:
    return RetryableStorageWriter(max_attempts=3, base_delay=0.01, sleep=no_sleep)


@pytest.fixture
def chunk_store(staging_dir: Path, writer: RetryableStorageWriter) -> LocalChunkStore:
    return LocalChunkStore(staging_dir, writer=writer)


@pytest.fixture
def backend(storage_root: Path) -> LocalStorageBackend:
    return LocalStorageBackend(storage_root, public_base_url="/media")


@pytest.fixture
def repository() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def reassembly(chunk_store, backend, writer) -> ReassemblyService:
    return ReassemblyService(chunk_store, backend, writer=writer)


@pytest.fixture
def upload_service(repository, chunk_store, reassembly, upload_config, observer) -> UploadService:
    return UploadService(
        repository=repository,
        chunk_store=chunk_store,
        reassembly=reassembly,
        config=upload_config,
        observer=observer
    )
