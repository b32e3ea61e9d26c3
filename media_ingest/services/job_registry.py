"""Process-local registry of background finalize jobs."""
import logging
from typing import Any, Dict, List, Optional

from media_ingest.models.finalize_job import FinalizeJob, JobStatus, generate_job_id
from media_ingest.models.upload_session import utcnow
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class FinalizeJobRegistry:
    """
    Job table held in a dict.

    Jobs live only as long as the process that runs their tasks, so they are
    never shared through the session repository.
    """

    def __init__(self):
        self._jobs: Dict[str, FinalizeJob] = {}

    def create(self, upload_id: str, file_name: str) -> FinalizeJob:
        job = FinalizeJob(job_id=generate_job_id(upload_id), upload_id=upload_id, file_name=file_name)
        self._jobs[job.job_id] = job
        logger.info(f"Finalize job queued: {job.job_id}")
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[FinalizeJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def update(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning(f"Finalize job {job_id} disappeared before it could be marked {status.value}")
            return
        job.status = status
        job.progress = progress
        job.updated_at = utcnow()
        if result is not None:
            job.result = result
        if error is not None:
            job.error = error

    def active(self) -> List[FinalizeJob]:
        """Pending and processing jobs, oldest first."""
        jobs = [job.model_copy(deep=True) for job in self._jobs.values() if job.is_active]
        return sorted(jobs, key=lambda job: job.created_at)

    def purge_finished(self, cutoff_timestamp: float) -> int:
        """Drop completed and failed jobs last updated before the cutoff."""
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if not job.is_active and job.updated_at.timestamp() < cutoff_timestamp
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._jobs)
