"""Upload session lifecycle: initialize, receive chunks, finalize, cancel, expire."""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from media_ingest.core.config import UploadConfig
from media_ingest.core.decorators import async_exception_handler, async_performance_monitor
from media_ingest.core.exceptions import (
    FinalizeJobNotFoundException,
    IncompleteUploadException,
    IngestException,
    InvalidChunkIndexException,
    MissingChunkException,
    SessionClosedException,
    SessionNotFoundException,
    SizeLimitExceededException,
    UnsupportedMediaTypeException,
    ValidationException,
)
from media_ingest.core.service_protocols import ProgressObserver, SessionRepository
from media_ingest.core.types import (
    CancelResult,
    ChunkResult,
    FinalizeResult,
    InitializeResult,
    ProgressEvent,
)
from media_ingest.models.finalize_job import JobStatus
from media_ingest.models.upload_session import UploadSession, UploadStatus
from media_ingest.services.chunk_store import LocalChunkStore
from media_ingest.services.job_registry import FinalizeJobRegistry
from media_ingest.services.reassembly_service import ReassemblyService
from media_ingest.utils.file_utils import is_safe_object_key
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

MAX_FILE_NAME_LENGTH = 255

_CLOSED_MESSAGES = {
    UploadStatus.COMPLETED: "Upload already completed",
    UploadStatus.FAILED: "Upload session failed",
    UploadStatus.FINALIZING: "Upload is being finalized",
    UploadStatus.CANCELLED: "Upload was cancelled",
}


def expected_chunk_count(file_size: int, chunk_size: int) -> int:
    """Number of chunks a file of ``file_size`` bytes splits into (at least one)."""
    return max(1, -(-file_size // chunk_size))


class UploadService:
    """
    Orchestrates the chunked upload state machine.

    ``initialized -> uploading -> finalizing -> completed | failed``; cancel
    and the stale sweep remove a session outright. Every mutation of a
    session happens inside the repository's per-session lock.
    """

    def __init__(
        self,
        repository: SessionRepository,
        chunk_store: LocalChunkStore,
        reassembly: ReassemblyService,
        config: UploadConfig,
        observer: Optional[ProgressObserver] = None,
        jobs: Optional[FinalizeJobRegistry] = None
    ):
        self.repository = repository
        self.chunk_store = chunk_store
        self.reassembly = reassembly
        self.config = config
        self.observer = observer
        self.allowed_mime_types = frozenset(mime.lower() for mime in config.allowed_mime_types)
        self.jobs = jobs if jobs is not None else FinalizeJobRegistry()
        self._sweeper_task: Optional[asyncio.Task] = None
        self._job_tasks: Dict[str, asyncio.Task] = {}

        logger.info(
            f"Initialized UploadService: chunk_size={config.chunk_size}, max_file_size={config.max_file_size}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require(self, upload_id: str) -> UploadSession:
        session = await self.repository.get(upload_id)
        if session is None:
            raise SessionNotFoundException(upload_id)
        return session

    @staticmethod
    def _ensure_open(session: UploadSession) -> None:
        if session.is_closed:
            raise SessionClosedException(
                session.upload_id,
                session.status.value,
                _CLOSED_MESSAGES.get(session.status)
            )

    def _expected_chunk_size(self, session: UploadSession, index: int) -> int:
        if index < session.total_chunks:
            return session.chunk_size
        return session.file_size - (session.total_chunks - 1) * session.chunk_size

    async def _notify(self, session: UploadSession, event: str, message: Optional[str] = None) -> None:
        """Deliver an event to the observer; failures are logged and dropped."""
        if self.observer is None:
            return
        payload = ProgressEvent(
            event=event,
            progress=session.progress,
            total_chunks=session.total_chunks,
            uploaded_chunks=session.uploaded_chunks,
            file_name=session.file_name,
            file_size=session.file_size,
            chunk_size=session.chunk_size,
            message=message
        )
        try:
            await self.observer.notify(session.upload_id, payload)
        except Exception as e:
            logger.error(f"Progress notification failed for {session.upload_id}: {e}")

    @staticmethod
    def _chunk_result(session: UploadSession, index: int, duplicate: bool) -> ChunkResult:
        return {
            "upload_id": session.upload_id,
            "index": index,
            "progress": session.progress,
            "uploaded_chunks": session.uploaded_chunks,
            "total_chunks": session.total_chunks,
            "duplicate": duplicate,
        }

    async def _set_outcome(self, upload_id: str, status: UploadStatus, error_message: Optional[str] = None) -> Optional[UploadSession]:
        async with self.repository.lock(upload_id):
            session = await self.repository.get(upload_id)
            if session is None:
                logger.warning(f"Session {upload_id} disappeared before it could be marked {status.value}")
                return None
            session.status = status
            session.error_message = error_message
            session.touch()
            await self.repository.save(session)
            return session

    def _check_finalizable(self, session: UploadSession, final_file_name: str) -> None:
        """Raise unless ``session`` is open, complete and ``final_file_name`` is a safe key."""
        self._ensure_open(session)

        if not is_safe_object_key(final_file_name):
            raise ValidationException(f"Invalid target file name: {final_file_name}", field="final_file_name")

        if session.uploaded_chunks != session.total_chunks:
            raise IncompleteUploadException(
                session.upload_id,
                session.uploaded_chunks,
                session.total_chunks,
                session.missing_chunks()
            )
        for index in range(1, session.total_chunks + 1):
            if index not in session.received_chunks:
                raise MissingChunkException(session.upload_id, index, session.uploaded_chunks, session.total_chunks)

    async def _cleanup_staging(self, upload_id: str) -> None:
        try:
            await self.chunk_store.delete_all(upload_id)
        except Exception as e:
            logger.error(f"Staging cleanup failed for {upload_id}: {e}")

    async def _remove(self, upload_id: str, stale_before: Optional[float] = None) -> bool:
        """
        Delete staged chunks and the session record.

        With ``stale_before`` set this is the sweep path: sessions touched
        after the cutoff are skipped and finalizing sessions are removed too.
        """
        async with self.repository.lock(upload_id):
            session = await self.repository.get(upload_id)
            if session is None:
                if stale_before is None:
                    raise SessionNotFoundException(upload_id)
                return False

            if stale_before is None:
                if session.status == UploadStatus.FINALIZING:
                    raise SessionClosedException(upload_id, session.status.value, _CLOSED_MESSAGES[session.status])
            elif session.updated_at.timestamp() >= stale_before:
                return False

            await self.chunk_store.delete_all(upload_id)
            await self.repository.delete(upload_id)
            return True

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    @async_exception_handler
    async def initialize(self, file_name: str, file_size: int, mime_type: str, total_chunks: int) -> InitializeResult:
        """
        Open a new upload session.

        Args:
            file_name: Original file name, informational only.
            file_size: Declared size in bytes.
            mime_type: Declared MIME type; must be allow-listed.
            total_chunks: Declared chunk count; must match ``file_size``.

        Returns:
            The new upload id together with the server chunk size.
        """
        file_name = (file_name or "").strip()
        if not file_name or len(file_name) > MAX_FILE_NAME_LENGTH:
            raise ValidationException("File name must be 1-255 characters", field="file_name")
        if file_size < 0:
            raise ValidationException("File size cannot be negative", field="file_size")
        if file_size > self.config.max_file_size:
            raise SizeLimitExceededException(file_size, self.config.max_file_size)

        mime_type = (mime_type or "").strip().lower()
        if mime_type not in self.allowed_mime_types:
            raise UnsupportedMediaTypeException(mime_type)

        expected = expected_chunk_count(file_size, self.config.chunk_size)
        if total_chunks != expected:
            raise ValidationException(
                f"Expected {expected} chunks of {self.config.chunk_size} bytes, got {total_chunks}",
                field="total_chunks",
                details={"expected_total_chunks": expected, "chunk_size": self.config.chunk_size}
            )

        session = UploadSession(
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            total_chunks=total_chunks,
            chunk_size=self.config.chunk_size
        )
        await self.repository.create(session)

        logger.info(
            f"Upload initialized: {session.upload_id} for {file_name} "
            f"({file_size} bytes, {total_chunks} chunks)"
        )
        return {
            "upload_id": session.upload_id,
            "chunk_size": session.chunk_size,
            "total_chunks": session.total_chunks,
        }

    @async_exception_handler
    async def receive_chunk(self, upload_id: str, index: int, total_chunks: int, data: bytes) -> ChunkResult:
        """
        Store one chunk. Re-sending an index that was already stored is a no-op.

        Returns:
            Current progress; ``duplicate`` is True when nothing was written.
        """
        session = await self._require(upload_id)
        self._ensure_open(session)

        if total_chunks != session.total_chunks:
            raise ValidationException(
                f"Total chunks mismatch: session expects {session.total_chunks}",
                field="total_chunks"
            )
        if index < 1 or index > session.total_chunks:
            raise InvalidChunkIndexException(index, session.total_chunks)

        expected_size = self._expected_chunk_size(session, index)
        if len(data) != expected_size:
            raise ValidationException(
                f"Chunk {index} must be {expected_size} bytes, got {len(data)}",
                field="chunk",
                details={"index": index, "expected_size": expected_size, "size": len(data)}
            )

        if index in session.received_chunks:
            logger.info(f"Chunk {index} already present for {upload_id}")
            return self._chunk_result(session, index, duplicate=True)

        staged = await self.chunk_store.stage(upload_id, index, data)
        committed = False
        try:
            async with self.repository.lock(upload_id):
                current = await self.repository.get(upload_id)
                if current is None:
                    # Cancelled while the chunk was being written
                    await self.chunk_store.discard(staged)
                    await self.chunk_store.delete_all(upload_id)
                    raise SessionNotFoundException(upload_id)
                self._ensure_open(current)

                if index in current.received_chunks:
                    session = current
                else:
                    await self.chunk_store.commit(staged)
                    current.received_chunks.add(index)
                    current.status = UploadStatus.UPLOADING
                    current.touch()
                    await self.repository.save(current)
                    session = current
                    committed = True
        finally:
            if not committed:
                await self.chunk_store.discard(staged)

        if committed:
            logger.info(
                f"Chunk {index}/{session.total_chunks} stored for {upload_id} ({session.progress}%)"
            )
            await self._notify(session, "progress")

        return self._chunk_result(session, index, duplicate=not committed)

    @async_performance_monitor("upload.finalize", slow_threshold=30.0)
    @async_exception_handler
    async def finalize(self, upload_id: str, final_file_name: str) -> FinalizeResult:
        """
        Validate completeness and reassemble the upload at ``final_file_name``.

        Completeness failures raise and leave the session open for the
        missing chunks. Reassembly failures are returned with
        ``success=False`` and mark the session failed. Staged chunks are
        removed afterwards in both cases.
        """
        async with self.repository.lock(upload_id):
            session = await self._require(upload_id)
            self._check_finalizable(session, final_file_name)

            session.status = UploadStatus.FINALIZING
            session.target_path = final_file_name
            session.touch()
            await self.repository.save(session)

        try:
            result = await self.reassembly.assemble(upload_id, session.total_chunks, final_file_name)
        except Exception as e:
            logger.error(f"Finalize failed for {upload_id}: {e}")
            failed = await self._set_outcome(upload_id, UploadStatus.FAILED, error_message=str(e))
            await self._notify(failed or session, "failed", message=str(e))
            return {
                "success": False,
                "file_name": "",
                "message": f"Failed to finalize upload: {e}",
            }
        finally:
            await self._cleanup_staging(upload_id)

        completed = await self._set_outcome(upload_id, UploadStatus.COMPLETED)
        await self._notify(completed or session, "completed")

        logger.info(f"Upload finalized: {upload_id} -> {result.path}")
        return {
            "success": True,
            "file_name": final_file_name,
            "message": "Upload finalized successfully",
            "path": result.path,
            "url": result.url,
            "size": result.size,
            "checksum": result.checksum,
        }

    @async_exception_handler
    async def cancel(self, upload_id: str) -> CancelResult:
        """Delete staged chunks and forget the session."""
        await self._remove(upload_id)
        logger.info(f"Upload cancelled: {upload_id}")
        return {"success": True, "message": "Upload cancelled successfully"}

    async def chunk_size_for(self, upload_id: str) -> int:
        """Largest chunk the session accepts, so callers can bound their reads."""
        session = await self._require(upload_id)
        return session.chunk_size

    async def get_progress(self, upload_id: str) -> Optional[Dict[str, Any]]:
        session = await self.repository.get(upload_id)
        return session.to_progress() if session else None

    async def get_status(self, upload_id: str) -> Optional[Dict[str, Any]]:
        session = await self.repository.get(upload_id)
        return session.to_snapshot() if session else None

    async def get_stats(self) -> Dict[str, Any]:
        return await self.repository.get_stats()

    @async_performance_monitor("upload.expire_stale", slow_threshold=10.0)
    async def expire_stale(self, max_age_hours: Optional[float] = None) -> int:
        """
        Remove sessions not updated within ``max_age_hours``.

        Finished finalize jobs older than the same cutoff are purged too.

        Returns:
            Number of sessions removed.
        """
        max_age_hours = self.config.stale_session_max_age_hours if max_age_hours is None else max_age_hours
        cutoff = time.time() - max_age_hours * 3600

        expired = 0
        for upload_id in await self.repository.list_stale(cutoff):
            try:
                if await self._remove(upload_id, stale_before=cutoff):
                    expired += 1
                    logger.info(f"Expired stale upload session: {upload_id}")
            except Exception as e:
                logger.error(f"Failed to expire session {upload_id}: {e}")

        if expired:
            logger.info(f"Expired {expired} stale upload sessions")

        purged = self.jobs.purge_finished(cutoff)
        if purged:
            logger.info(f"Purged {purged} finished finalize jobs")
        return expired

    # ------------------------------------------------------------------
    # Background finalize jobs
    # ------------------------------------------------------------------

    @async_exception_handler
    async def queue_finalize(self, upload_id: str, final_file_name: str) -> Dict[str, Any]:
        """
        Run :meth:`finalize` in a background task and return its job record.

        The session is checked up front so that an unknown, closed or
        incomplete upload is rejected immediately instead of producing a
        failed job.
        """
        session = await self._require(upload_id)
        self._check_finalizable(session, final_file_name)

        job = self.jobs.create(upload_id, final_file_name)
        task = asyncio.create_task(self._run_finalize_job(job.job_id, upload_id, final_file_name))
        self._job_tasks[job.job_id] = task
        task.add_done_callback(lambda _task, job_id=job.job_id: self._job_tasks.pop(job_id, None))
        return job.to_dict()

    async def _run_finalize_job(self, job_id: str, upload_id: str, final_file_name: str) -> None:
        self.jobs.update(job_id, JobStatus.PROCESSING, progress=10)
        try:
            result = await self.finalize(upload_id, final_file_name)
        except Exception as e:
            error = e.message if isinstance(e, IngestException) else str(e)
            logger.error(f"Finalize job {job_id} failed: {error}")
            self.jobs.update(job_id, JobStatus.FAILED, progress=0, error=error)
            return

        if not result["success"]:
            self.jobs.update(job_id, JobStatus.FAILED, progress=0, error=result["message"])
            return

        self.jobs.update(
            job_id,
            JobStatus.COMPLETED,
            progress=100,
            result={
                "file_name": result["file_name"],
                "path": result["path"],
                "url": result["url"],
                "size": result["size"],
                "checksum": result["checksum"],
            }
        )
        logger.info(f"Finalize job completed: {job_id}")

    def get_job(self, job_id: str) -> Dict[str, Any]:
        job = self.jobs.get(job_id)
        if job is None:
            raise FinalizeJobNotFoundException(job_id)
        return job.to_dict()

    def get_active_jobs(self) -> List[Dict[str, Any]]:
        return [job.to_dict() for job in self.jobs.active()]

    async def stop_finalize_jobs(self) -> None:
        """Cancel finalize jobs still running, e.g. on shutdown."""
        running = dict(self._job_tasks)
        for task in running.values():
            task.cancel()
        if running:
            await asyncio.gather(*running.values(), return_exceptions=True)
            for job_id in running:
                job = self.jobs.get(job_id)
                if job is not None and job.is_active:
                    self.jobs.update(job_id, JobStatus.FAILED, progress=job.progress, error="Finalize job cancelled")
            logger.info(f"Cancelled {len(running)} running finalize jobs")
        self._job_tasks.clear()

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self, interval: float) -> None:
        logger.info("Upload session cleanup task started")
        while True:
            try:
                await asyncio.sleep(interval)
                await self.expire_stale()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Session cleanup task error: {e}")
        logger.info("Upload session cleanup task stopped")

    def start_sweeper(self, interval: Optional[float] = None) -> asyncio.Task:
        """Start the periodic stale-session sweep on the running loop."""
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(
                self._sweep_loop(interval or self.config.stale_sweep_interval_seconds)
            )
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None
