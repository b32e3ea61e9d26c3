"""Upload-related schemas."""
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope."""
    success: bool = Field(True, description="Whether the operation succeeded")
    message: str = Field("", description="Human readable result")
    data: Optional[T] = Field(None, description="Operation payload")


class InitializeUploadRequest(BaseModel):
    """Schema for opening an upload session."""
    file_name: str = Field(..., min_length=1, max_length=255, description="Original filename")
    file_size: int = Field(..., ge=0, description="File size in bytes")
    mime_type: str = Field(..., min_length=1, description="Declared MIME type")
    total_chunks: int = Field(..., ge=1, description="Total number of chunks")

    model_config = {
        "json_schema_extra": {
            "example": {
                "file_name": "lecture-01.mp4",
                "file_size": 12582912,
                "mime_type": "video/mp4",
                "total_chunks": 3
            }
        }
    }


class FinalizeUploadRequest(BaseModel):
    """Schema for upload completion."""
    final_file_name: str = Field(..., min_length=1, description="Storage key of the reassembled file")


class InitializeUploadResponse(BaseModel):
    """Schema for upload session creation."""
    upload_id: str = Field(..., description="Upload session ID")
    chunk_size: int = Field(..., description="Chunk size in bytes")
    total_chunks: int = Field(..., description="Total number of chunks")


class ChunkUploadResponse(BaseModel):
    upload_id: str
    index: int
    progress: int = Field(..., ge=0, le=100)
    uploaded_chunks: int
    total_chunks: int
    duplicate: bool = Field(False, description="Chunk was already stored; nothing written")


class FinalizeUploadResponse(BaseModel):
    success: bool
    file_name: str
    message: str
    path: Optional[str] = None
    url: Optional[str] = None
    size: Optional[int] = None
    checksum: Optional[str] = Field(None, description="SHA-256 of the reassembled file")


class UploadProgressResponse(BaseModel):
    upload_id: str
    file_name: str
    total_chunks: int
    uploaded_chunks: int
    progress: int
    status: str


class UploadStatusResponse(UploadProgressResponse):
    """Full session snapshot."""
    file_size: int
    mime_type: str
    chunk_size: int
    received_chunks: List[int]
    missing_chunks: List[int]
    target_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Any
    updated_at: Any


class ExpireUploadsResponse(BaseModel):
    expired: int = Field(..., description="Number of sessions removed")


class FinalizeJobResponse(BaseModel):
    """Background finalize job record."""
    job_id: str
    upload_id: str
    file_name: str
    status: str = Field(..., description="pending, processing, completed or failed")
    progress: int = Field(..., ge=0, le=100)
    result: Optional[Dict[str, Any]] = Field(None, description="Stored file details once completed")
    error: Optional[str] = None
    created_at: Any
    updated_at: Any
