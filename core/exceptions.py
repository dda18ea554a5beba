"""
Exception types and global exception handlers for the FastAPI application.

Every error leaves the API in the same envelope::

    {"success": false, "error": "<readable message>", "error_type": "<optional code>"}
"""
import traceback
from typing import Optional

import structlog
from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import settings

logger = structlog.get_logger("exceptions")


class APIException(Exception):
    """Base API exception class."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "Internal server error",
        headers: dict = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.headers = headers or {}
        self.error_type = error_type


class DatabaseException(APIException):
    """Database-related exception."""

    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_type="DATABASE_ERROR",
        )


class AuthenticationException(APIException):
    """Missing, invalid or expired credentials."""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationException(APIException):
    """Authenticated, but acting on someone else's resource."""

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ValidationException(APIException):
    """Bad input shape, size or type."""

    def __init__(self, detail: str = "Validation failed", errors: list = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
        self.errors = errors or []


class ResourceNotFoundException(APIException):
    """Resource not found, or not owned by the caller."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictException(APIException):
    """Resource already exists."""

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class QuotaExceededException(APIException):
    """Usage or cost ledger denied the operation."""

    def __init__(self, detail: str = "Usage limit exceeded", error_type: str = "LIMIT_EXCEEDED"):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=detail,
            error_type=error_type,
        )


class RateLimitException(APIException):
    """Rate limit exceeded exception."""

    def __init__(self, detail: str = "Rate limit exceeded", retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
            error_type="RATE_LIMIT",
        )


class AIServiceException(APIException):
    """Upstream speech-to-text or text-generation failure."""

    def __init__(
        self,
        detail: str = "AI service error",
        provider: str = None,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, error_type=error_type)
        self.provider = provider


def error_body(message: str, error_type: Optional[str] = None, **extra) -> dict:
    """Build the standard error envelope."""
    body = {"success": False, "error": message}
    if error_type:
        body["error_type"] = error_type
    body.update(extra)
    return body


def _request_context(request: Request) -> dict:
    return {
        "path": request.url.path,
        "method": request.method,
        "client_host": request.client.host if request.client else None,
    }


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle custom API exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "API exception occurred",
        exception_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.detail,
        **_request_context(request),
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.error_type),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI/Starlette HTTP exceptions."""
    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        **_request_context(request),
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation errors are client errors (400)."""
    errors = exc.errors()
    logger.warning("Validation error occurred", errors=str(errors), **_request_context(request))

    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(message, "VALIDATION_ERROR"),
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database exceptions."""
    logger.error(
        "Database error occurred",
        exception_type=type(exc).__name__,
        error_detail=str(exc),
        **_request_context(request),
    )

    if isinstance(exc, IntegrityError):
        status_code = status.HTTP_409_CONFLICT
        message = "Database constraint violation"
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        message = "Database operation failed"

    extra = {"debug": str(exc)} if settings.debug else {}
    return JSONResponse(
        status_code=status_code,
        content=error_body(message, "DATABASE_ERROR", **extra),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other uncaught exceptions."""
    logger.error(
        "Unhandled exception occurred",
        exception_type=type(exc).__name__,
        error_detail=str(exc),
        stack=traceback.format_exc(),
        **_request_context(request),
    )

    extra = {"debug": f"{type(exc).__name__}: {exc}"} if settings.debug else {}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", **extra),
    )


def setup_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    from starlette.exceptions import HTTPException as StarletteHTTPException

    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
