"""
Global exception handling for the batchguard API.

Provides structured JSON error responses for all exception types,
preventing stack traces from leaking to clients.
"""

from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BatchGuardException(Exception):
    """Base exception for batchguard application errors."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class StoreUnavailableError(BatchGuardException):
    """Raised when the persistent store cannot be reached. Callers fail closed."""
    def __init__(self, operation: str, message: str = None):
        super().__init__(
            message=message or f"Store unavailable during '{operation}'",
            status_code=503,
            details={"operation": operation},
        )


class UnauthorizedForcedCallError(BatchGuardException):
    """Raised when a forced/guardian call carries a missing or wrong shared secret."""
    def __init__(self, reason: str = "Invalid or missing cron secret"):
        super().__init__(message=reason, status_code=401)


class FanOutEnumerationError(BatchGuardException):
    """Raised when the fan-out cannot enumerate its work and aborts."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message=message, status_code=500, details=details)


class ConfigurationError(BatchGuardException):
    """Raised when a required server-side setting is missing."""
    def __init__(self, setting: str):
        super().__init__(
            message=f"Server configuration error: '{setting}' is not set",
            status_code=500,
            details={"setting": setting},
        )


class UnitDispatchError(Exception):
    """A single (organization, prompt, provider) unit failed."""
    def __init__(self, prompt_id: str, provider: str, reason: str):
        self.prompt_id = prompt_id
        self.provider = provider
        self.reason = reason
        super().__init__(f"Prompt {prompt_id} on {provider} failed: {reason}")


async def _batchguard_exception_handler(request: Request, exc: BatchGuardException) -> JSONResponse:
    """Handle batchguard application exceptions."""
    error_id = _now().strftime("%Y%m%d_%H%M%S_%f")

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "batchguard_exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        message=exc.message,
        path=request.url.path,
        method=request.method,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": type(exc).__name__,
                "error_id": error_id,
                "details": jsonable_encoder(exc.details),
                "timestamp": _now().isoformat(),
            }
        },
    )


async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unhandled exceptions."""
    error_id = _now().strftime("%Y%m%d_%H%M%S_%f")

    logger.error(
        "unhandled_exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "type": "InternalServerError",
                "error_id": error_id,
                "timestamp": _now().isoformat(),
            }
        },
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors with structured detail."""
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "type": "ValidationError",
                "details": jsonable_encoder(exc.errors()),
                "timestamp": _now().isoformat(),
            }
        },
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "HTTPException",
                "status_code": exc.status_code,
                "timestamp": _now().isoformat(),
            }
        },
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(BatchGuardException, _batchguard_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _global_exception_handler)
    logger.info("exception_handlers_registered")
