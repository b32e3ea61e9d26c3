"""Data models for upload sessions and finalize jobs."""
from media_ingest.models.finalize_job import (
    ACTIVE_JOB_STATUSES,
    FinalizeJob,
    JobStatus,
    generate_job_id,
)
from media_ingest.models.upload_session import (
    CLOSED_STATUSES,
    UploadSession,
    UploadStatus,
    generate_upload_id,
)

__all__ = [
    "UploadSession",
    "UploadStatus",
    "CLOSED_STATUSES",
    "generate_upload_id",
    "FinalizeJob",
    "JobStatus",
    "ACTIVE_JOB_STATUSES",
    "generate_job_id",
]
