"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from media_ingest.api import upload
from media_ingest.config import ERROR_CODE_STATUS, settings as default_settings
from media_ingest.core.config import Settings
from media_ingest.core.decorators import async_performance_monitor
from media_ingest.core.exceptions import ErrorCategory, IngestException
from media_ingest.core.service_factory import ServiceContainer, UploadServiceFactory
from media_ingest.utils.logger import configure_logging, get_logger

logger: logging.Logger = get_logger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(status_code: int, message: str, error: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error}
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifecycle management

    Connects the session registry and storage backend and starts the stale
    session sweeper; everything is released on shutdown.
    """
    services: ServiceContainer = app.state.services
    logger.info(f"Starting {app.title}...")

    await services.start()
    logger.info("Upload services ready")

    yield  # Application runtime

    logger.info(f"Shutting down {app.title}...")
    try:
        await services.close()
    except Exception as e:
        logger.error(f"Error shutting down upload services: {e}")


def create_application(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None
) -> FastAPI:
    """Create and configure FastAPI application instance

    Args:
        settings: Settings to build from; the process-wide settings by default.
        services: Prebuilt service container, mainly for tests.

    Returns:
        A fully initialized FastAPI app.
    """
    settings = settings or default_settings
    configure_logging(settings.get_logging_config())
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Chunked, resumable media upload API",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    application.state.settings = settings
    application.state.services = services or UploadServiceFactory(settings).build()

    # Add CORS middleware (configure specific origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(application)
    _register_routes(application)

    logger.info(
        f"Application '{settings.app_name}' v{settings.app_version} "
        "created successfully"
    )

    return application


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers for consistent error responses"""

    @app.exception_handler(IngestException)
    async def ingest_exception_handler(request: Request, exc: IngestException) -> JSONResponse:
        """Handle application exceptions"""
        status_code = _status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"Ingest exception occurred: {exc.message}",
            extra={
                "error_code": exc.error_code,
                "category": exc.category.value,
                "severity": exc.severity.value,
                "details": exc.details,
                "request_path": request.url.path,
                "request_method": request.method
            }
        )

        return _error_response(
            status_code,
            exc.message,
            {
                "code": exc.error_code,
                "message": exc.message,
                "category": exc.category.value,
                "severity": exc.severity.value,
                "details": exc.details,
                "timestamp": _timestamp(),
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle FastAPI HTTP exceptions"""
        logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
        response = _error_response(
            exc.status_code,
            str(exc.detail),
            {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "timestamp": _timestamp(),
                "path": str(request.url.path)
            }
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle malformed request bodies and parameters"""
        logger.warning(f"Request validation error: {exc.errors()}")
        return _error_response(
            422,
            "Request validation failed",
            {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc.errors()),
                "timestamp": _timestamp(),
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle Pydantic model validation exceptions"""
        logger.warning(f"Validation error: {exc}")
        return _error_response(
            422,
            "Request validation failed",
            {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc.errors()),
                "timestamp": _timestamp(),
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle Starlette base HTTP exceptions"""
        logger.warning(f"Starlette HTTP exception: {exc.status_code} - {exc.detail}")
        return _error_response(
            exc.status_code,
            str(exc.detail),
            {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "timestamp": _timestamp(),
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(Exception)
    @async_performance_monitor("global_exception_handler")
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for uncaught exceptions"""
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
            extra={
                "request_path": request.url.path,
                "request_method": request.method,
                "exception_type": type(exc).__name__
            }
        )

        if isinstance(exc, ConnectionError):
            status_code = 503
            message = "Service temporarily unavailable"
        elif isinstance(exc, TimeoutError):
            status_code = 504
            message = "Request timeout"
        elif isinstance(exc, PermissionError):
            status_code = 403
            message = "Permission denied"
        else:
            status_code = 500
            message = "Internal server error"

        return _error_response(
            status_code,
            message,
            {
                "code": "INTERNAL_SERVER_ERROR",
                "message": message,
                "timestamp": _timestamp(),
                "path": str(request.url.path),
                "type": type(exc).__name__
            }
        )


def jsonable_errors(errors: Any) -> Any:
    """Pydantic error lists may carry exception objects in ``ctx``."""
    cleaned = []
    for error in errors:
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        error.pop("input", None)
        cleaned.append(error)
    return cleaned


def _register_routes(app: FastAPI) -> None:
    """Register API routes with the FastAPI application"""
    app.include_router(
        upload.router,
        prefix="/api/v1",
        tags=["upload"]
    )

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> Dict[str, Any]:
        services: ServiceContainer = request.app.state.services
        return {
            "success": True,
            "message": "ok",
            "data": {
                "version": request.app.version,
                "timestamp": _timestamp(),
                **services.get_status()
            }
        }


def _status_code_for(exc: IngestException) -> int:
    """Dedicated status per error code, else by category."""
    if exc.error_code in ERROR_CODE_STATUS:
        return ERROR_CODE_STATUS[exc.error_code]
    return _map_error_category_to_status_code(exc.category)


def _map_error_category_to_status_code(category: ErrorCategory) -> int:
    """Map custom error categories to standard HTTP status codes

    Args:
        category: ErrorCategory enum value

    Returns:
        Corresponding HTTP status code
    """
    status_code_mapping: Dict[ErrorCategory, int] = {
        ErrorCategory.AUTHENTICATION: 401,    # Unauthorized
        ErrorCategory.VALIDATION: 422,        # Unprocessable Entity
        ErrorCategory.NOT_FOUND: 404,         # Not Found
        ErrorCategory.CONFLICT: 409,          # Conflict
        ErrorCategory.BUSINESS_LOGIC: 400,    # Bad Request
        ErrorCategory.STORAGE: 500,           # Internal Server Error
        ErrorCategory.FILE_SYSTEM: 500,       # Internal Server Error
        ErrorCategory.SYSTEM: 500             # Internal Server Error
    }
    return status_code_mapping.get(category, 500)


# Create FastAPI application instance
app: FastAPI = create_application()

if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {default_settings.app_name} v{default_settings.app_version}")
    logger.info(f"Environment: {default_settings.environment.value}")
    logger.info(f"Debug mode: {default_settings.debug}")

    uvicorn.run(
        "media_ingest.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.value.lower(),
        access_log=True
    )
