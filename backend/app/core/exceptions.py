"""
Custom exceptions and error handlers for consistent error responses.

Every caller-visible failure carries a stable error code plus a readable
message. Internal stack detail never leaves the process.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class RequestValidationFailed(AppException):
    """Raised for bad input shape or range. Never retried."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ConflictError(AppException):
    """Raised when capacity is exhausted or a booking would overlap."""

    def __init__(self, message: str, details: Dict[str, Any] = None, error_code: str = "ERR_CONFLICT_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class InvalidTransitionError(ConflictError):
    """Raised when a rental is asked to move to a state its current state does not allow."""

    def __init__(self, current: str, target: str, message: str = None):
        super().__init__(
            message=message or f"Cannot move rental from '{current}' to '{target}'",
            details={"current_status": current, "target_status": target},
            error_code="ERR_TRANSITION_001"
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class InvalidSignatureError(AppException):
    """Raised when a payment gateway callback fails signature verification."""

    def __init__(self, order_id: Any = None):
        super().__init__(
            message="Invalid signature",
            error_code="ERR_SIGNATURE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"order_id": order_id}
        )


class GatewayError(AppException):
    """Raised when the external payment gateway fails or times out. Transient."""

    def __init__(self, message: str = "Payment gateway unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class IntegrityViolationError(AppException):
    """Raised when an invariant is found broken at write time. Always a bug."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INTEGRITY_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if isinstance(exc, IntegrityViolationError):
        logger.critical("Integrity violation on %s %s: %s", request.method, request.url.path, exc.message)
        # Invariant details are internal
        content = {"error_code": exc.error_code, "message": "Integrity violation detected", "details": {}}
    else:
        content = {"error_code": exc.error_code, "message": exc.message, "details": exc.details}

    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Handler for constraint violations raised by the database."""
    logger.critical("Database integrity error on %s %s", request.method, request.url.path, exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTEGRITY_002",
            "message": "Integrity violation detected",
            "details": {}
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.error("Unhandled exception: %s", type(exc).__name__, exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
