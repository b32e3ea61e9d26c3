"""Tests for the upload session lifecycle."""
import asyncio
import os
import time
from datetime import timedelta

import pytest

from conftest import CHUNK_SIZE, split_chunks
from media_ingest.core.exceptions import (
    IncompleteUploadException,
    InvalidChunkIndexException,
    MissingChunkException,
    SessionClosedException,
    SessionNotFoundException,
    SizeLimitExceededException,
    StorageException,
    UnsupportedMediaTypeException,
    ValidationException,
)
from media_ingest.models.upload_session import UploadStatus, utcnow
from media_ingest.services.reassembly_service import ReassemblyService
from media_ingest.services.upload_service import UploadService, expected_chunk_count

PAYLOAD = b"The quick brown fox jumps over!"  # 31 bytes -> 8 chunks of 4


async def start(service: UploadService, data: bytes = PAYLOAD, mime_type: str = "video/mp4") -> str:
    result = await service.initialize(
        file_name="clip.mp4",
        file_size=len(data),
        mime_type=mime_type,
        total_chunks=expected_chunk_count(len(data), CHUNK_SIZE)
    )
    return result["upload_id"]


async def send(service: UploadService, upload_id: str, data: bytes, order=None):
    chunks = split_chunks(data)
    indices = order or range(1, len(chunks) + 1)
    results = []
    for index in indices:
        results.append(await service.receive_chunk(upload_id, index, len(chunks), chunks[index - 1]))
    return results


class RecordingBackend:
    """Wraps a backend and records every write path."""

    def __init__(self, inner):
        self.inner = inner
        self.writes = []

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def put_stream(self, path, stream):
        self.writes.append(path)
        return await self.inner.put_stream(path, stream)

    async def move(self, source, destination):
        self.writes.append(destination)
        return await self.inner.move(source, destination)


class BrokenBackend:
    """Every streamed write fails."""

    def __init__(self, inner):
        self.inner = inner
        self.attempts = 0

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def put_stream(self, path, stream):
        self.attempts += 1
        raise StorageException("disk full", operation="put_stream")


class TestInitialize:

    @pytest.mark.asyncio
    async def test_creates_initialized_session(self, upload_service):
        result = await upload_service.initialize("clip.mp4", 10, "video/mp4", 3)

        assert result["chunk_size"] == CHUNK_SIZE
        assert result["total_chunks"] == 3
        assert result["upload_id"].startswith("upload_")

        status = await upload_service.get_status(result["upload_id"])
        assert status["status"] == "initialized"
        assert status["received_chunks"] == []
        assert status["missing_chunks"] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_each_call_creates_a_new_session(self, upload_service):
        first = await upload_service.initialize("clip.mp4", 10, "video/mp4", 3)
        second = await upload_service.initialize("clip.mp4", 10, "video/mp4", 3)

        assert first["upload_id"] != second["upload_id"]

    @pytest.mark.asyncio
    async def test_rejects_oversized_file_without_creating_session(self, upload_service, repository):
        with pytest.raises(SizeLimitExceededException):
            await upload_service.initialize("big.mp4", 1025, "video/mp4", 257)

        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_rejects_unlisted_mime_type_without_creating_session(self, upload_service, repository):
        with pytest.raises(UnsupportedMediaTypeException):
            await upload_service.initialize("run.exe", 10, "application/x-msdownload", 3)

        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_mime_type_is_case_insensitive(self, upload_service):
        result = await upload_service.initialize("clip.mp4", 10, "Video/MP4", 3)

        status = await upload_service.get_status(result["upload_id"])
        assert status["mime_type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_rejects_inconsistent_chunk_count(self, upload_service, repository):
        with pytest.raises(ValidationException) as exc_info:
            await upload_service.initialize("clip.mp4", 10, "video/mp4", 2)

        assert exc_info.value.details["expected_total_chunks"] == 3
        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_empty_file_is_one_chunk(self, upload_service):
        result = await upload_service.initialize("empty.pdf", 0, "application/pdf", 1)

        assert result["total_chunks"] == 1


class TestReceiveChunk:

    @pytest.mark.asyncio
    async def test_progress_and_status(self, upload_service, observer):
        upload_id = await upload_service.initialize("clip.mp4", 10, "video/mp4", 3)
        upload_id = upload_id["upload_id"]

        result = await upload_service.receive_chunk(upload_id, 2, 3, b"efgh")

        assert result == {
            "upload_id": upload_id,
            "index": 2,
            "progress": 33,
            "uploaded_chunks": 1,
            "total_chunks": 3,
            "duplicate": False,
        }
        progress = await upload_service.get_progress(upload_id)
        assert progress["status"] == "uploading"
        assert progress["progress"] == 33
        assert [event.progress for _, event in observer.events] == [33]

    @pytest.mark.asyncio
    async def test_progress_rounds_half_up(self, upload_service):
        upload_id = (await upload_service.initialize("clip.mp4", 32, "video/mp4", 8))["upload_id"]

        result = await upload_service.receive_chunk(upload_id, 1, 8, b"abcd")

        # 12.5% rounds to 13
        assert result["progress"] == 13

    @pytest.mark.asyncio
    async def test_unknown_session(self, upload_service):
        with pytest.raises(SessionNotFoundException):
            await upload_service.receive_chunk("upload_missing", 1, 1, b"abcd")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [0, -1, 4])
    async def test_out_of_range_index(self, upload_service, index):
        upload_id = (await upload_service.initialize("clip.mp4", 10, "video/mp4", 3))["upload_id"]

        with pytest.raises(InvalidChunkIndexException):
            await upload_service.receive_chunk(upload_id, index, 3, b"abcd")

        assert (await upload_service.get_progress(upload_id))["uploaded_chunks"] == 0

    @pytest.mark.asyncio
    async def test_declared_total_must_match_session(self, upload_service):
        upload_id = (await upload_service.initialize("clip.mp4", 10, "video/mp4", 3))["upload_id"]

        with pytest.raises(ValidationException):
            await upload_service.receive_chunk(upload_id, 1, 4, b"abcd")

    @pytest.mark.asyncio
    async def test_chunk_size_must_match_slice(self, upload_service):
        upload_id = (await upload_service.initialize("clip.mp4", 10, "video/mp4", 3))["upload_id"]

        with pytest.raises(ValidationException):
            await upload_service.receive_chunk(upload_id, 1, 3, b"ab")
        with pytest.raises(ValidationException):
            await upload_service.receive_chunk(upload_id, 3, 3, b"abcd")

    @pytest.mark.asyncio
    async def test_duplicate_chunk_is_noop(self, upload_service, chunk_store, observer):
        upload_id = (await upload_service.initialize("clip.mp4", 10, "video/mp4", 3))["upload_id"]
        await upload_service.receive_chunk(upload_id, 1, 3, b"abcd")

        result = await upload_service.receive_chunk(upload_id, 1, 3, b"XXXX")

        assert result["duplicate"] is True
        assert result["uploaded_chunks"] == 1
        assert await chunk_store.get(upload_id, 1) == b"abcd"
        assert len(observer.events) == 1

    @pytest.mark.asyncio
    async def test_closed_session_rejects_chunks(self, upload_service):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD)
        await upload_service.finalize(upload_id, "out/clip.mp4")

        with pytest.raises(SessionClosedException):
            await upload_service.receive_chunk(upload_id, 1, 8, b"abcd")

    @pytest.mark.asyncio
    async def test_observer_failure_does_not_fail_upload(self, repository, chunk_store, reassembly, upload_config):
        class ExplodingObserver:
            async def notify(self, upload_id, event):
                raise RuntimeError("socket closed")

        service = UploadService(repository, chunk_store, reassembly, upload_config, observer=ExplodingObserver())
        upload_id = (await service.initialize("clip.mp4", 4, "video/mp4", 1))["upload_id"]

        result = await service.receive_chunk(upload_id, 1, 1, b"abcd")

        assert result["progress"] == 100

    @pytest.mark.asyncio
    async def test_concurrent_completion_has_one_transition(self, upload_service, observer):
        upload_id = (await upload_service.initialize("clip.mp4", 8, "video/mp4", 2))["upload_id"]
        await upload_service.receive_chunk(upload_id, 1, 2, b"abcd")

        results = await asyncio.gather(
            upload_service.receive_chunk(upload_id, 2, 2, b"efgh"),
            upload_service.receive_chunk(upload_id, 2, 2, b"efgh"),
        )

        assert sorted(r["duplicate"] for r in results) == [False, True]
        assert all(r["progress"] == 100 for r in results)
        completions = [event for _, event in observer.events if event.progress == 100]
        assert len(completions) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_chunk_write_leaves_no_chunks(self, upload_service, chunk_store, staging_dir):
        upload_id = (await upload_service.initialize("clip.mp4", 8, "video/mp4", 2))["upload_id"]
        original_stage = chunk_store.stage

        async def stage_then_cancel(*args, **kwargs):
            staged = await original_stage(*args, **kwargs)
            await upload_service.cancel(upload_id)
            return staged

        chunk_store.stage = stage_then_cancel

        with pytest.raises(SessionNotFoundException):
            await upload_service.receive_chunk(upload_id, 1, 2, b"abcd")

        assert not (staging_dir / upload_id).exists()
        assert await upload_service.get_status(upload_id) is None


class TestFinalize:

    @pytest.mark.asyncio
    async def test_round_trip(self, upload_service, storage_root, staging_dir, observer):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD)

        result = await upload_service.finalize(upload_id, "videos/clip.mp4")

        assert result["success"] is True
        assert result["message"] == "Upload finalized successfully"
        assert result["file_name"] == "videos/clip.mp4"
        assert result["size"] == len(PAYLOAD)
        assert result["url"] == "/media/videos/clip.mp4"
        assert (storage_root / "videos" / "clip.mp4").read_bytes() == PAYLOAD
        assert not (staging_dir / upload_id).exists()

        status = await upload_service.get_status(upload_id)
        assert status["status"] == "completed"
        assert status["target_path"] == "videos/clip.mp4"
        assert observer.events[-1][1].event == "completed"

    @pytest.mark.asyncio
    async def test_arrival_order_does_not_change_output(self, upload_service, storage_root):
        data = os.urandom(18)  # 5 chunks, last one short
        in_order = await start(upload_service, data)
        scrambled = await start(upload_service, data)
        await send(upload_service, in_order, data, order=[1, 2, 3, 4, 5])
        await send(upload_service, scrambled, data, order=[3, 1, 5, 2, 4])

        first = await upload_service.finalize(in_order, "a.bin")
        second = await upload_service.finalize(scrambled, "b.bin")

        assert (storage_root / "a.bin").read_bytes() == data
        assert (storage_root / "b.bin").read_bytes() == data
        assert first["checksum"] == second["checksum"]

    @pytest.mark.asyncio
    async def test_empty_file_round_trip(self, upload_service, storage_root):
        upload_id = (await upload_service.initialize("empty.pdf", 0, "application/pdf", 1))["upload_id"]
        await upload_service.receive_chunk(upload_id, 1, 1, b"")

        result = await upload_service.finalize(upload_id, "empty.pdf")

        assert result["success"] is True
        assert (storage_root / "empty.pdf").read_bytes() == b""

    @pytest.mark.asyncio
    async def test_incomplete_upload_never_writes(self, repository, chunk_store, backend, writer, upload_config):
        recording = RecordingBackend(backend)
        service = UploadService(
            repository, chunk_store, ReassemblyService(chunk_store, recording, writer=writer), upload_config
        )
        upload_id = await start(service)
        await send(service, upload_id, PAYLOAD, order=[1, 2, 3])

        with pytest.raises(IncompleteUploadException) as exc_info:
            await service.finalize(upload_id, "out.mp4")

        assert exc_info.value.details["uploaded_chunks"] == 3
        assert exc_info.value.details["total_chunks"] == 8
        assert exc_info.value.missing_chunks == [4, 5, 6, 7, 8]
        assert recording.writes == []
        assert (await service.get_status(upload_id))["status"] == "uploading"

    @pytest.mark.asyncio
    async def test_gap_reports_lowest_missing_index(self, upload_service):
        upload_id = (await upload_service.initialize("clip.mp4", 16, "video/mp4", 4))["upload_id"]
        for index in (1, 2, 4):
            await upload_service.receive_chunk(upload_id, index, 4, b"abcd")

        with pytest.raises(IncompleteUploadException) as exc_info:
            await upload_service.finalize(upload_id, "out.mp4")

        assert exc_info.value.missing_chunks == [3]

    @pytest.mark.asyncio
    async def test_gap_revalidation_raises_missing_chunk(self, upload_service, repository):
        upload_id = (await upload_service.initialize("clip.mp4", 16, "video/mp4", 4))["upload_id"]
        # Corrupt the record so the count matches but index 3 is absent
        session = await repository.get(upload_id)
        session.received_chunks = {1, 2, 4, 5}
        await repository.save(session)

        with pytest.raises(MissingChunkException) as exc_info:
            await upload_service.finalize(upload_id, "out.mp4")

        assert exc_info.value.index == 3
        assert exc_info.value.error_code == "MISSING_CHUNK"

    @pytest.mark.asyncio
    async def test_unknown_session(self, upload_service):
        with pytest.raises(SessionNotFoundException):
            await upload_service.finalize("upload_missing", "out.mp4")

    @pytest.mark.asyncio
    async def test_unknown_sessions_leave_no_locks_behind(self, upload_service, repository, monkeypatch):
        for i in range(50):
            with pytest.raises(SessionNotFoundException):
                await upload_service.finalize(f"upload_missing_{i}", "out.mp4")
        upload_id = await start(upload_service)
        await upload_service.cancel(upload_id)

        async def list_removed(cutoff):
            return [upload_id, "upload_missing_sweep"]

        monkeypatch.setattr(repository, "list_stale", list_removed)
        assert await upload_service.expire_stale(max_age_hours=0) == 0

        assert len(repository) == 0
        assert repository._locks == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["../escape.mp4", "/abs/path.mp4", "a\\b.mp4", ""])
    async def test_rejects_unsafe_target(self, upload_service, target):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD)

        with pytest.raises(ValidationException):
            await upload_service.finalize(upload_id, target)

        assert (await upload_service.get_status(upload_id))["status"] == "uploading"

    @pytest.mark.asyncio
    async def test_storage_failure_marks_failed_and_cleans_staging(
        self, repository, chunk_store, backend, writer, upload_config, staging_dir, observer
    ):
        broken = BrokenBackend(backend)
        service = UploadService(
            repository, chunk_store, ReassemblyService(chunk_store, broken, writer=writer), upload_config,
            observer=observer
        )
        upload_id = await start(service)
        await send(service, upload_id, PAYLOAD)

        result = await service.finalize(upload_id, "out.mp4")

        assert result["success"] is False
        assert "disk full" in result["message"]
        assert broken.attempts == 3
        assert not (staging_dir / upload_id).exists()

        status = await service.get_status(upload_id)
        assert status["status"] == "failed"
        assert "disk full" in status["error_message"]
        assert observer.events[-1][1].event == "failed"

    @pytest.mark.asyncio
    async def test_second_finalize_is_rejected(self, upload_service):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD)
        await upload_service.finalize(upload_id, "out.mp4")

        with pytest.raises(SessionClosedException):
            await upload_service.finalize(upload_id, "out.mp4")

    @pytest.mark.asyncio
    async def test_concurrent_finalize_reassembles_once(self, upload_service, observer):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD)

        results = await asyncio.gather(
            upload_service.finalize(upload_id, "out.mp4"),
            upload_service.finalize(upload_id, "out.mp4"),
            return_exceptions=True
        )

        successes = [r for r in results if isinstance(r, dict) and r["success"]]
        rejected = [r for r in results if isinstance(r, SessionClosedException)]
        assert len(successes) == 1
        assert len(rejected) == 1
        assert [event.event for _, event in observer.events].count("completed") == 1


class TestCancelAndExpire:

    @pytest.mark.asyncio
    async def test_cancel_removes_session_and_chunks(self, upload_service, staging_dir):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD, order=[1, 2])

        result = await upload_service.cancel(upload_id)

        assert result == {"success": True, "message": "Upload cancelled successfully"}
        assert await upload_service.get_status(upload_id) is None
        assert await upload_service.get_progress(upload_id) is None
        assert not (staging_dir / upload_id).exists()

    @pytest.mark.asyncio
    async def test_cancel_unknown_session(self, upload_service):
        with pytest.raises(SessionNotFoundException):
            await upload_service.cancel("upload_missing")

    @pytest.mark.asyncio
    async def test_cancel_after_cancel_is_not_found(self, upload_service):
        upload_id = await start(upload_service)
        await upload_service.cancel(upload_id)

        with pytest.raises(SessionNotFoundException):
            await upload_service.cancel(upload_id)

    @pytest.mark.asyncio
    async def test_cancel_refused_while_finalizing(self, upload_service, repository):
        upload_id = await start(upload_service)
        session = await repository.get(upload_id)
        session.status = UploadStatus.FINALIZING
        await repository.save(session)

        with pytest.raises(SessionClosedException):
            await upload_service.cancel(upload_id)

    @pytest.mark.asyncio
    async def test_expire_stale_removes_only_old_sessions(self, upload_service, repository, staging_dir):
        old_id = await start(upload_service)
        await send(upload_service, old_id, PAYLOAD, order=[1])
        fresh_id = await start(upload_service)

        session = await repository.get(old_id)
        session.updated_at = utcnow() - timedelta(hours=25)
        await repository.save(session)

        expired = await upload_service.expire_stale()

        assert expired == 1
        assert await upload_service.get_status(old_id) is None
        assert not (staging_dir / old_id).exists()
        assert await upload_service.get_status(fresh_id) is not None

    @pytest.mark.asyncio
    async def test_expire_stale_with_explicit_age(self, upload_service):
        upload_id = await start(upload_service)
        await asyncio.sleep(0.01)

        assert await upload_service.expire_stale(max_age_hours=0) == 1
        assert await upload_service.get_status(upload_id) is None

    @pytest.mark.asyncio
    async def test_expire_skips_session_refreshed_after_listing(self, upload_service, repository, monkeypatch):
        upload_id = await start(upload_service)
        await send(upload_service, upload_id, PAYLOAD, order=[1])
        session = await repository.get(upload_id)
        session.updated_at = utcnow() - timedelta(hours=25)
        await repository.save(session)
        chunks = split_chunks(PAYLOAD)
        list_stale = repository.list_stale

        async def list_then_upload(cutoff):
            stale = await list_stale(cutoff)
            await upload_service.receive_chunk(upload_id, 2, len(chunks), chunks[1])
            return stale

        monkeypatch.setattr(repository, "list_stale", list_then_upload)

        expired = await upload_service.expire_stale()

        assert expired == 0
        status = await upload_service.get_status(upload_id)
        assert status is not None
        assert status["received_chunks"] == [1, 2]

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self, upload_service, repository):
        upload_id = await start(upload_service)
        session = await repository.get(upload_id)
        session.updated_at = utcnow() - timedelta(hours=48)
        await repository.save(session)

        upload_service.start_sweeper(interval=0.01)
        deadline = time.monotonic() + 2
        while await upload_service.get_status(upload_id) is not None and time.monotonic() < deadline:
            await asyncio.sleep(0.01)
        await upload_service.stop_sweeper()

        assert await upload_service.get_status(upload_id) is None

    @pytest.mark.asyncio
    async def test_stats(self, upload_service):
        await start(upload_service)

        stats = await upload_service.get_stats()

        assert stats["total_sessions"] == 1
        assert stats["by_status"] == {"initialized": 1}


@pytest.mark.asyncio
@pytest.mark.parametrize("chunk_count", [1, 2, 50])
async def test_round_trip_for_various_chunk_counts(upload_service, storage_root, chunk_count):
    data = os.urandom(CHUNK_SIZE * chunk_count - 1)
    upload_id = await start(upload_service, data)
    await send(upload_service, upload_id, data)

    result = await upload_service.finalize(upload_id, f"round/{chunk_count}.bin")

    assert result["success"] is True
    assert (storage_root / "round" / f"{chunk_count}.bin").read_bytes() == data
