"""Tests for background finalize jobs."""
import asyncio
import hashlib
import time
from datetime import timedelta

import pytest

from conftest import CHUNK_SIZE, split_chunks
from media_ingest.core.exceptions import (
    FinalizeJobNotFoundException,
    IncompleteUploadException,
    SessionClosedException,
    SessionNotFoundException,
    StorageException,
)
from media_ingest.models.finalize_job import JobStatus
from media_ingest.models.upload_session import utcnow
from media_ingest.services.job_registry import FinalizeJobRegistry
from media_ingest.services.reassembly_service import ReassemblyService
from media_ingest.services.upload_service import UploadService, expected_chunk_count

PAYLOAD = b"background reassembly"  # 21 bytes -> 6 chunks of 4


async def upload_all(service: UploadService, data: bytes = PAYLOAD) -> str:
    chunks = split_chunks(data)
    result = await service.initialize(
        file_name="clip.mp4",
        file_size=len(data),
        mime_type="video/mp4",
        total_chunks=expected_chunk_count(len(data), CHUNK_SIZE)
    )
    upload_id = result["upload_id"]
    for index, chunk in enumerate(chunks, start=1):
        await service.receive_chunk(upload_id, index, len(chunks), chunk)
    return upload_id


async def wait_for_job(service: UploadService, job_id: str, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    job = service.get_job(job_id)
    while job["status"] in ("pending", "processing") and time.monotonic() < deadline:
        await asyncio.sleep(0.01)
        job = service.get_job(job_id)
    return job


class GatedBackend:
    """Holds every streamed write until ``release`` is set."""

    def __init__(self, inner):
        self.inner = inner
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def put_stream(self, path, stream):
        self.entered.set()
        await self.release.wait()
        return await self.inner.put_stream(path, stream)


class FailingBackend:

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def put_stream(self, path, stream):
        raise StorageException("bucket unavailable", operation="put_stream")


def service_with_backend(repository, chunk_store, writer, upload_config, backend) -> UploadService:
    return UploadService(
        repository, chunk_store, ReassemblyService(chunk_store, backend, writer=writer), upload_config
    )


class TestQueueFinalize:

    @pytest.mark.asyncio
    async def test_job_completes_with_stored_file_details(self, upload_service, storage_root):
        upload_id = await upload_all(upload_service)

        queued = await upload_service.queue_finalize(upload_id, "lessons/clip.mp4")

        assert queued["status"] == "pending"
        assert queued["upload_id"] == upload_id
        assert queued["job_id"].startswith("job_")
        assert queued["job_id"].endswith(upload_id)

        job = await wait_for_job(upload_service, queued["job_id"])

        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["error"] is None
        assert job["result"]["url"] == "/media/lessons/clip.mp4"
        assert job["result"]["size"] == len(PAYLOAD)
        assert job["result"]["checksum"] == hashlib.sha256(PAYLOAD).hexdigest()
        assert (storage_root / "lessons" / "clip.mp4").read_bytes() == PAYLOAD
        assert (await upload_service.get_status(upload_id))["status"] == "completed"
        assert upload_service.get_active_jobs() == []

    @pytest.mark.asyncio
    async def test_incomplete_upload_is_rejected_without_a_job(self, upload_service):
        result = await upload_service.initialize("clip.mp4", len(PAYLOAD), "video/mp4", 6)
        await upload_service.receive_chunk(result["upload_id"], 1, 6, PAYLOAD[:4])

        with pytest.raises(IncompleteUploadException):
            await upload_service.queue_finalize(result["upload_id"], "clip.mp4")

        assert len(upload_service.jobs) == 0

    @pytest.mark.asyncio
    async def test_unknown_upload_and_unknown_job(self, upload_service):
        with pytest.raises(SessionNotFoundException):
            await upload_service.queue_finalize("upload_missing", "clip.mp4")

        with pytest.raises(FinalizeJobNotFoundException):
            upload_service.get_job("job_missing")

    @pytest.mark.asyncio
    async def test_storage_failure_marks_job_failed(
        self, repository, chunk_store, writer, upload_config, backend
    ):
        service = service_with_backend(repository, chunk_store, writer, upload_config, FailingBackend(backend))
        upload_id = await upload_all(service)

        queued = await service.queue_finalize(upload_id, "clip.mp4")
        job = await wait_for_job(service, queued["job_id"])

        assert job["status"] == "failed"
        assert "bucket unavailable" in job["error"]
        assert job["result"] is None
        assert (await service.get_status(upload_id))["status"] == "failed"

    @pytest.mark.asyncio
    async def test_active_jobs_and_concurrent_finalize(
        self, repository, chunk_store, writer, upload_config, backend
    ):
        gated = GatedBackend(backend)
        service = service_with_backend(repository, chunk_store, writer, upload_config, gated)
        upload_id = await upload_all(service)

        queued = await service.queue_finalize(upload_id, "clip.mp4")
        await asyncio.wait_for(gated.entered.wait(), timeout=2)

        active = service.get_active_jobs()
        assert [job["job_id"] for job in active] == [queued["job_id"]]
        assert active[0]["status"] == "processing"
        with pytest.raises(SessionClosedException):
            await service.queue_finalize(upload_id, "clip.mp4")

        gated.release.set()
        job = await wait_for_job(service, queued["job_id"])

        assert job["status"] == "completed"
        assert service.get_active_jobs() == []

    @pytest.mark.asyncio
    async def test_stop_marks_running_jobs_cancelled(
        self, repository, chunk_store, writer, upload_config, backend
    ):
        gated = GatedBackend(backend)
        service = service_with_backend(repository, chunk_store, writer, upload_config, gated)
        upload_id = await upload_all(service)
        queued = await service.queue_finalize(upload_id, "clip.mp4")
        await asyncio.wait_for(gated.entered.wait(), timeout=2)

        await service.stop_finalize_jobs()

        job = service.get_job(queued["job_id"])
        assert job["status"] == "failed"
        assert job["error"] == "Finalize job cancelled"
        assert service.get_active_jobs() == []

    @pytest.mark.asyncio
    async def test_stale_sweep_purges_finished_jobs(self, upload_service):
        upload_id = await upload_all(upload_service)
        queued = await upload_service.queue_finalize(upload_id, "clip.mp4")
        await wait_for_job(upload_service, queued["job_id"])

        await upload_service.expire_stale()
        assert upload_service.get_job(queued["job_id"])["status"] == "completed"

        await asyncio.sleep(0.01)
        await upload_service.expire_stale(max_age_hours=0)

        with pytest.raises(FinalizeJobNotFoundException):
            upload_service.get_job(queued["job_id"])


class TestFinalizeJobRegistry:

    def test_purge_keeps_active_and_recent_jobs(self):
        registry = FinalizeJobRegistry()
        old_done = registry.create("upload_a", "a.mp4")
        old_running = registry.create("upload_b", "b.mp4")
        recent_done = registry.create("upload_c", "c.mp4")
        registry.update(old_done.job_id, JobStatus.COMPLETED, progress=100)
        registry.update(old_running.job_id, JobStatus.PROCESSING, progress=10)
        registry.update(recent_done.job_id, JobStatus.FAILED, progress=0, error="boom")
        for job_id in (old_done.job_id, old_running.job_id):
            registry._jobs[job_id].updated_at = utcnow() - timedelta(hours=48)

        purged = registry.purge_finished((utcnow() - timedelta(hours=24)).timestamp())

        assert purged == 1
        assert registry.get(old_done.job_id) is None
        assert registry.get(old_running.job_id).status == JobStatus.PROCESSING
        assert registry.get(recent_done.job_id).error == "boom"

    def test_active_jobs_are_oldest_first(self):
        registry = FinalizeJobRegistry()
        first = registry.create("upload_a", "a.mp4")
        second = registry.create("upload_b", "b.mp4")
        registry._jobs[first.job_id].created_at = utcnow() - timedelta(minutes=5)

        assert [job.job_id for job in registry.active()] == [first.job_id, second.job_id]

    def test_returned_jobs_are_copies(self):
        registry = FinalizeJobRegistry()
        job = registry.create("upload_a", "a.mp4")

        copy = registry.get(job.job_id)
        copy.status = JobStatus.COMPLETED

        assert registry.get(job.job_id).status == JobStatus.PENDING
