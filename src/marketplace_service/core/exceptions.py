"""Error taxonomy and handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """Error surfaced to the caller as ``{error, message, details}`` JSON."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}


class ValidationError(ServiceError):
    """Malformed or out-of-range input."""

    def __init__(
        self,
        message: str,
        error: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 400, details)


class AuthenticationError(ServiceError):
    """Missing or rejected session credentials."""

    def __init__(self, message: str, error: str = "UNAUTHORIZED") -> None:
        super().__init__(error, message, 401)


class AuthorizationError(ServiceError):
    """Actor lacks the required relationship to the entity."""

    def __init__(self, message: str, error: str = "FORBIDDEN") -> None:
        super().__init__(error, message, 403)


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""

    def __init__(self, error: str, message: str) -> None:
        super().__init__(error, message, 404)


class ConflictError(ServiceError):
    """Duplicate bid or contract."""

    def __init__(self, error: str, message: str) -> None:
        super().__init__(error, message, 409)


class InvalidStateError(ServiceError):
    """Operation not legal in the entity's current lifecycle state."""

    def __init__(
        self,
        message: str,
        error: str = "INVALID_STATUS",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, 409, details)


class ExternalServiceError(ServiceError):
    """Gateway, identity or AI collaborator unreachable or misconfigured."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 502,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(error, message, status_code, details)


class SignatureVerificationError(ServiceError):
    """Webhook payload does not carry a valid signature."""

    def __init__(self, message: str, error: str = "INVALID_SIGNATURE") -> None:
        super().__init__(error, message, 400)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "NOT_FOUND", "message": "Resource not found", "details": {}},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
