"""Background finalize job model."""
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from media_ingest.models.upload_session import utcnow


def generate_job_id(upload_id: str) -> str:
    return f"job_{int(time.time() * 1000)}_{upload_id}"


class JobStatus(str, Enum):
    """Background finalize job states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class FinalizeJob(BaseModel):
    """A finalize handed off to a background task and polled by the client."""
    job_id: str = Field(..., description="Job ID")
    upload_id: str = Field(..., description="Upload session being finalized")
    file_name: str = Field(..., description="Storage key of the reassembled file")
    status: JobStatus = Field(JobStatus.PENDING, description="Job status")
    progress: int = Field(0, ge=0, le=100, description="Coarse job progress")
    result: Optional[Dict[str, Any]] = Field(None, description="Stored file details once completed")
    error: Optional[str] = Field(None, description="Failure reason")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "json_schema_extra": {
            "example": {
                "job_id": "job_1718000100000_upload_1718000000000_a1b2c3d4",
                "upload_id": "upload_1718000000000_a1b2c3d4",
                "file_name": "lessons/lecture-01.mp4",
                "status": "completed",
                "progress": 100,
                "result": {
                    "file_name": "lessons/lecture-01.mp4",
                    "url": "/uploads/lessons/lecture-01.mp4",
                    "size": 12582912,
                    "checksum": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
                },
                "error": None,
                "created_at": "2024-06-10T06:15:00.000Z",
                "updated_at": "2024-06-10T06:15:04.000Z"
            }
        }
    }

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
