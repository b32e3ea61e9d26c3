"""
Application configuration entry point.
Exposes the settings of the configuration manager plus shared constants.
"""

from media_ingest.core.config import config_manager

settings = config_manager.settings

# API response status codes
HTTP_STATUS_CODES = {
    "SUCCESS": 200,
    "CREATED": 201,
    "BAD_REQUEST": 400,
    "UNAUTHORIZED": 401,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "PAYLOAD_TOO_LARGE": 413,
    "UNSUPPORTED_MEDIA_TYPE": 415,
    "UNPROCESSABLE_ENTITY": 422,
    "INTERNAL_SERVER_ERROR": 500,
    "SERVICE_UNAVAILABLE": 503
}

# Error codes with a dedicated HTTP status
ERROR_CODE_STATUS = {
    "FILE_TOO_LARGE": HTTP_STATUS_CODES["PAYLOAD_TOO_LARGE"],
    "UNSUPPORTED_FILE_TYPE": HTTP_STATUS_CODES["UNSUPPORTED_MEDIA_TYPE"],
    "INVALID_CHUNK_INDEX": HTTP_STATUS_CODES["BAD_REQUEST"],
    "UPLOAD_INCOMPLETE": HTTP_STATUS_CODES["BAD_REQUEST"],
    "MISSING_CHUNK": HTTP_STATUS_CODES["BAD_REQUEST"],
    "UPLOAD_SESSION_NOT_FOUND": HTTP_STATUS_CODES["NOT_FOUND"],
    "UPLOAD_SESSION_CLOSED": HTTP_STATUS_CODES["CONFLICT"],
    "FINALIZE_JOB_NOT_FOUND": HTTP_STATUS_CODES["NOT_FOUND"],
}
