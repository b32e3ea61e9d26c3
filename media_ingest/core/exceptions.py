"""Centralized exception definitions and error taxonomy."""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Describes severity for surfaced errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categorization used for error routing and analytics."""
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    BUSINESS_LOGIC = "business_logic"
    STORAGE = "storage"
    FILE_SYSTEM = "file_system"
    SYSTEM = "system"


class IngestException(Exception):
    """Base exception type for the application."""

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception metadata into a dict."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "details": self.details,
            "type": self.__class__.__name__
        }


# Validation exceptions
class ValidationException(IngestException):
    """Raised when request or model validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        validation_details = details or {}
        if field:
            validation_details["field"] = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.MEDIUM,
            details=validation_details
        )


class SizeLimitExceededException(IngestException):
    """Raised when a declared file size is above the configured cap."""

    def __init__(self, file_size: int, max_file_size: int):
        super().__init__(
            message=f"File too large. Maximum size is {max_file_size} bytes",
            error_code="FILE_TOO_LARGE",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details={"file_size": file_size, "max_file_size": max_file_size}
        )


class UnsupportedMediaTypeException(IngestException):
    """Raised when a MIME type is not in the allow-list."""

    def __init__(self, mime_type: str):
        super().__init__(
            message=f"File type {mime_type} is not allowed",
            error_code="UNSUPPORTED_FILE_TYPE",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details={"mime_type": mime_type}
        )


class InvalidChunkIndexException(IngestException):
    """Raised when a chunk index falls outside ``1..total_chunks``."""

    def __init__(self, index: int, total_chunks: int):
        super().__init__(
            message="Invalid chunk number",
            error_code="INVALID_CHUNK_INDEX",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            details={"index": index, "total_chunks": total_chunks}
        )


# Session state exceptions
class SessionNotFoundException(IngestException):
    """Raised when an upload identifier cannot be located."""

    def __init__(self, upload_id: str):
        super().__init__(
            message="Upload session not found",
            error_code="UPLOAD_SESSION_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            details={"upload_id": upload_id}
        )


class SessionClosedException(IngestException):
    """Raised when a session no longer accepts the requested operation."""

    def __init__(self, upload_id: str, status: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Upload session is {status}",
            error_code="UPLOAD_SESSION_CLOSED",
            category=ErrorCategory.CONFLICT,
            severity=ErrorSeverity.LOW,
            details={"upload_id": upload_id, "status": status}
        )


class FinalizeJobNotFoundException(IngestException):
    """Raised when a background finalize job id is unknown or already purged."""

    def __init__(self, job_id: str):
        super().__init__(
            message="Finalize job not found",
            error_code="FINALIZE_JOB_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            details={"job_id": job_id}
        )


# Completeness exceptions
class IncompleteUploadException(IngestException):
    """Raised when finalize is attempted before every chunk has arrived."""

    def __init__(
        self,
        upload_id: str,
        uploaded_chunks: int,
        total_chunks: int,
        missing_chunks: Optional[List[int]] = None,
        message: Optional[str] = None
    ):
        missing = missing_chunks or []
        super().__init__(
            message=message or f"Upload incomplete. {uploaded_chunks}/{total_chunks} chunks uploaded",
            error_code="UPLOAD_INCOMPLETE",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            details={
                "upload_id": upload_id,
                "uploaded_chunks": uploaded_chunks,
                "total_chunks": total_chunks,
                "missing_chunks": missing
            }
        )
        self.missing_chunks = missing


class MissingChunkException(IncompleteUploadException):
    """Raised for the lowest missing index found while re-validating for gaps."""

    def __init__(self, upload_id: str, index: int, uploaded_chunks: int, total_chunks: int):
        super().__init__(
            upload_id=upload_id,
            uploaded_chunks=uploaded_chunks,
            total_chunks=total_chunks,
            missing_chunks=[index],
            message=f"Chunk {index} is missing"
        )
        self.error_code = "MISSING_CHUNK"
        self.index = index


# Storage exceptions
class StorageException(IngestException):
    """Raised for storage layer failures."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        storage_details = details or {}
        if operation:
            storage_details["operation"] = operation
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            category=ErrorCategory.STORAGE,
            severity=severity,
            details=storage_details,
            original_error=original_error
        )


class ChunkNotFoundException(StorageException):
    """Raised when a staged chunk cannot be located."""

    def __init__(self, upload_id: str, index: int):
        super().__init__(
            message=f"Chunk {index} not found for upload {upload_id}",
            operation="read",
            severity=ErrorSeverity.MEDIUM,
            details={"upload_id": upload_id, "index": index}
        )
        self.error_code = "CHUNK_NOT_FOUND"


class ChunkReadException(StorageException):
    """Raised when reassembly cannot read a chunk that passed the completeness check."""

    def __init__(self, upload_id: str, index: int, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Failed to read chunk {index} for upload {upload_id}",
            operation="reassemble",
            severity=ErrorSeverity.HIGH,
            details={"upload_id": upload_id, "index": index},
            original_error=original_error
        )
        self.error_code = "CHUNK_READ_ERROR"
        self.index = index


# System exceptions
class SystemException(IngestException):
    """Raised for generic internal/system failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="SYSTEM_ERROR",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            details=details
        )


class ConfigurationException(IngestException):
    """Raised for configuration/initialization failures."""

    def __init__(self, message: str, config_key: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        config_details = details or {}
        if config_key:
            config_details["config_key"] = config_key
        super().__init__(
            message=message,
            error_code="CONFIG_ERROR",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            details=config_details
        )
