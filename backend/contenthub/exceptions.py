from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import traceback
from .logger import logger


class ContentHubError(Exception):
    """Base exception for the content pipeline"""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


class ClaimConflictError(ContentHubError):
    """Raised when another request holds a fresh claim on the work item"""
    def __init__(self, entity: str, entity_id: str, current_status: str = None):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        super().__init__(
            f"{entity} {entity_id} is already being processed, try again shortly",
            "CLAIM_CONFLICT",
            409,
        )


class EntityNotFoundError(ContentHubError):
    """Raised when a job, translation or campaign is not found"""
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", "NOT_FOUND", 404)


class InvalidStateError(ContentHubError):
    """Raised when an entity is in the wrong state for the operation"""
    def __init__(self, entity: str, entity_id: str, current_state: str, expected_state: str):
        super().__init__(
            f"{entity} {entity_id} is in state '{current_state}', expected '{expected_state}'",
            "INVALID_STATE",
            400,
        )


class RequestValidationFailed(ContentHubError):
    """Raised when a request is well-formed but cannot be acted upon"""
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR", 400)


class UpstreamServiceError(ContentHubError):
    """Raised when an external service reports a failure"""
    def __init__(self, message: str, service: str = "upstream"):
        self.service = service
        super().__init__(message, "UPSTREAM_ERROR", 502)


class GenerationTimeoutError(ContentHubError):
    """Raised when an external generation task outlives the polling budget"""
    def __init__(self, task_id: str, waited_seconds: float):
        self.task_id = task_id
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Generation task {task_id} timed out after {waited_seconds:.0f}s",
            "GENERATION_TIMEOUT",
            504,
        )


class StorageError(ContentHubError):
    """Raised when object storage operations fail"""
    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, "STORAGE_ERROR", 502)


async def contenthub_exception_handler(request: Request, exc: ContentHubError):
    """Handle pipeline exceptions"""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"Application exception: {exc.code} - {exc.message}",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "status_code": exc.status_code,
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={
            "http_status_code": exc.status_code,
            "http_detail": exc.detail,
            "request_path": request.url.path,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        }
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
        extra={
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "request_path": request.url.path,
            "exc_traceback": traceback.format_exc(),
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An internal error occurred. Please try again later.",
        }
    )
