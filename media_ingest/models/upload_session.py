"""Upload session model."""
import json
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def generate_upload_id() -> str:
    """Return a new upload id: millisecond timestamp plus a random suffix."""
    return f"upload_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class UploadStatus(str, Enum):
    """Upload session lifecycle states."""
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CLOSED_STATUSES = frozenset({
    UploadStatus.FINALIZING,
    UploadStatus.COMPLETED,
    UploadStatus.FAILED,
    UploadStatus.CANCELLED,
})


class UploadSession(BaseModel):
    """Upload session model."""
    upload_id: str = Field(default_factory=generate_upload_id, description="Upload session ID")
    file_name: str = Field(..., min_length=1, description="Original filename")
    file_size: int = Field(..., ge=0, description="File total size in bytes")
    mime_type: str = Field(..., description="Declared MIME type")
    total_chunks: int = Field(..., ge=1, description="Total number of chunks")
    chunk_size: int = Field(..., ge=1, description="Server chunk size in bytes")
    received_chunks: Set[int] = Field(default_factory=set, description="Received chunk indices (1-based)")
    status: UploadStatus = Field(UploadStatus.INITIALIZED, description="Upload status")
    target_path: Optional[str] = Field(None, description="Final storage key once finalized")
    error_message: Optional[str] = Field(None, description="Failure reason")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "json_schema_extra": {
            "example": {
                "upload_id": "upload_1718000000000_a1b2c3d4",
                "file_name": "lecture-01.mp4",
                "file_size": 12582912,
                "mime_type": "video/mp4",
                "total_chunks": 3,
                "chunk_size": 5242880,
                "received_chunks": [1, 3],
                "status": "uploading",
                "target_path": None,
                "error_message": None,
                "created_at": "2024-06-10T06:13:20.000Z",
                "updated_at": "2024-06-10T06:14:02.000Z"
            }
        }
    }

    @property
    def uploaded_chunks(self) -> int:
        return len(self.received_chunks)

    @property
    def progress(self) -> int:
        """Percentage of chunks received, rounded half up."""
        return (200 * self.uploaded_chunks + self.total_chunks) // (2 * self.total_chunks)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def missing_chunks(self) -> List[int]:
        """Return the absent indices in ascending order."""
        return [i for i in range(1, self.total_chunks + 1) if i not in self.received_chunks]

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_progress(self) -> Dict[str, Any]:
        """Lightweight progress projection."""
        return {
            "upload_id": self.upload_id,
            "file_name": self.file_name,
            "total_chunks": self.total_chunks,
            "uploaded_chunks": self.uploaded_chunks,
            "progress": self.progress,
            "status": self.status.value,
        }

    def to_snapshot(self) -> Dict[str, Any]:
        """Full session projection with the received and missing indices."""
        data = self.model_dump(mode="json")
        data["received_chunks"] = sorted(self.received_chunks)
        data["missing_chunks"] = self.missing_chunks()
        data["uploaded_chunks"] = self.uploaded_chunks
        data["progress"] = self.progress
        return data

    def to_redis_hash(self) -> Dict[str, str]:
        """Flatten into string fields for a Redis hash."""
        data = self.model_dump(mode="json", exclude={"received_chunks"})
        mapping = {key: "" if value is None else str(value) for key, value in data.items()}
        mapping["received_chunks"] = json.dumps(sorted(self.received_chunks))
        return mapping

    @classmethod
    def from_redis_hash(cls, data: Dict[str, str]) -> "UploadSession":
        """Rebuild a session from the fields written by :meth:`to_redis_hash`."""
        values: Dict[str, Any] = dict(data)
        values["received_chunks"] = set(json.loads(values.get("received_chunks") or "[]"))
        for optional in ("target_path", "error_message"):
            if not values.get(optional):
                values[optional] = None
        return cls.model_validate(values)
