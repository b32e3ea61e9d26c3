"""Chunked upload API endpoints."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from media_ingest.auth import authenticate_user
from media_ingest.core.exceptions import SessionNotFoundException, ValidationException
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
from media_ingest.services.upload_service import UploadService
from media_ingest.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

router = APIRouter()


def get_upload_service(request: Request) -> UploadService:
    """Return the upload service attached to the running application."""
    return request.app.state.services.upload_service


@router.post("/uploads/initialize", response_model=ApiResponse[InitializeUploadResponse])
async def initialize_upload(
    body: InitializeUploadRequest,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """
    Start a new chunked upload session.

    Returns:
        The upload id and the chunk size the client must use.
    """
    result = await service.initialize(
        file_name=body.file_name,
        file_size=body.file_size,
        mime_type=body.mime_type,
        total_chunks=body.total_chunks
    )
    logger.info("Created upload session %s for user %s", result["upload_id"], username)
    return ApiResponse(success=True, message="Upload initialized", data=result)


@router.post("/uploads/{upload_id}/chunks", response_model=ApiResponse[ChunkUploadResponse])
async def upload_chunk(
    upload_id: str,
    index: int = Form(..., description="1-based chunk index"),
    total_chunks: int = Form(...),
    chunk: UploadFile = File(...),
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """
    Upload one chunk. Re-sending a stored chunk is acknowledged without a write.

    At most one byte more than the session chunk size is read from the part.
    """
    limit = await service.chunk_size_for(upload_id)
    try:
        data = await chunk.read(limit + 1)
    finally:
        await chunk.close()
    if len(data) > limit:
        raise ValidationException(
            f"Chunk {index} exceeds the chunk size of {limit} bytes",
            field="chunk",
            details={"index": index, "chunk_size": limit}
        )

    result = await service.receive_chunk(upload_id, index, total_chunks, data)
    message = "Chunk already uploaded" if result["duplicate"] else "Chunk uploaded"
    return ApiResponse(success=True, message=message, data=result)


@router.post("/uploads/{upload_id}/finalize", response_model=ApiResponse[FinalizeUploadResponse])
async def finalize_upload(
    upload_id: str,
    body: FinalizeUploadRequest,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """
    Reassemble all chunks into ``final_file_name``.

    A storage failure is reported with ``success=false`` in a 200 response;
    completeness problems are client errors.
    """
    result = await service.finalize(upload_id, body.final_file_name)
    return ApiResponse(success=result["success"], message=result["message"], data=result)


@router.post(
    "/uploads/{upload_id}/finalize/queue",
    response_model=ApiResponse[FinalizeJobResponse],
    status_code=202
)
async def queue_finalize_upload(
    upload_id: str,
    body: FinalizeUploadRequest,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """
    Hand reassembly off to a background job.

    Poll ``GET /uploads/jobs/{job_id}`` for the outcome.
    """
    job = await service.queue_finalize(upload_id, body.final_file_name)
    logger.info("User %s queued finalize job %s", username, job["job_id"])
    return ApiResponse(success=True, message="Upload queued for background processing", data=job)


@router.get("/uploads/jobs/active", response_model=ApiResponse[List[FinalizeJobResponse]])
async def active_finalize_jobs(
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    jobs = service.get_active_jobs()
    return ApiResponse(success=True, message=f"{len(jobs)} active jobs", data=jobs)


@router.get("/uploads/jobs/{job_id}", response_model=ApiResponse[FinalizeJobResponse])
async def finalize_job_status(
    job_id: str,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    return ApiResponse(success=True, message="Job status", data=service.get_job(job_id))


@router.get("/uploads/stats", response_model=ApiResponse[Dict[str, Any]])
async def upload_stats(
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    stats = await service.get_stats()
    return ApiResponse(success=True, message="Upload statistics", data=stats)


@router.post("/uploads/expire", response_model=ApiResponse[ExpireUploadsResponse])
async def expire_uploads(
    max_age_hours: Optional[float] = Query(None, ge=0, description="Defaults to the configured maximum age"),
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """Remove sessions that have not been updated recently."""
    expired = await service.expire_stale(max_age_hours)
    logger.info("User %s expired %d stale upload sessions", username, expired)
    return ApiResponse(success=True, message=f"Expired {expired} upload sessions", data={"expired": expired})


@router.get("/uploads/{upload_id}/progress", response_model=ApiResponse[UploadProgressResponse])
async def get_upload_progress(
    upload_id: str,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    progress = await service.get_progress(upload_id)
    if progress is None:
        raise SessionNotFoundException(upload_id)
    return ApiResponse(success=True, message="Upload progress", data=progress)


@router.get("/uploads/{upload_id}", response_model=ApiResponse[UploadStatusResponse])
async def get_upload_status(
    upload_id: str,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    snapshot = await service.get_status(upload_id)
    if snapshot is None:
        raise SessionNotFoundException(upload_id)
    return ApiResponse(success=True, message="Upload status", data=snapshot)


@router.delete("/uploads/{upload_id}", response_model=ApiResponse[None])
async def cancel_upload(
    upload_id: str,
    service: UploadService = Depends(get_upload_service),
    username: str = Depends(authenticate_user)
):
    """Cancel an upload and delete its staged chunks."""
    result = await service.cancel(upload_id)
    logger.info("Upload %s cancelled by %s", upload_id, username)
    return ApiResponse(success=result["success"], message=result["message"])
