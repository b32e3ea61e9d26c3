"""Pydantic schemas for API requests and responses."""
from media_ingest.schemas.upload import (
    ApiResponse,
    ChunkUploadResponse,
    ExpireUploadsResponse,
    FinalizeJobResponse,
    FinalizeUploadRequest,
    FinalizeUploadResponse,
    InitializeUploadRequest,
    InitializeUploadResponse,
    UploadProgressResponse,
    UploadStatusResponse,
)

__all__ = [
    "ApiResponse",
    # Requests
    "InitializeUploadRequest",
    "FinalizeUploadRequest",
    # Responses
    "InitializeUploadResponse",
    "ChunkUploadResponse",
    "FinalizeUploadResponse",
    "UploadProgressResponse",
    "UploadStatusResponse",
    "ExpireUploadsResponse",
    "FinalizeJobResponse",
]
