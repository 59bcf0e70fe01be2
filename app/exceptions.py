"""
Domain exceptions and their HTTP mapping.
Services raise these; the handlers below turn them into JSON responses.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidTransitionError(ConflictError):
    """The expected prior state no longer held when the write ran."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        details = {"currentStatus": current_status} if current_status else None
        super().__init__(message, details=details)
        self.code = "INVALID_TRANSITION"
        self.current_status = current_status


class BarcodeMismatchError(BadRequestError):
    def __init__(self, message: str = "Barcode doesn't match! Please scan the correct package."):
        super().__init__(message)
        self.code = "BARCODE_MISMATCH"


class StoreUnavailableError(AppError):
    """Transient read/write failure against the database. Safe to retry."""

    def __init__(self, message: str = "Database error"):
        super().__init__(
            message,
            code="STORE_UNAVAILABLE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"retryable": True},
        )


class NormalizationError(Exception):
    """Inbound webhook payload could not be turned into a payment event."""

    INVALID_SIGNATURE = "invalid_signature"
    BAD_PAYLOAD = "bad_payload"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


def error_body(exc: AppError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": exc.message, "code": exc.code}
    body.update(exc.details)
    return body


async def app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error", "code": "INTERNAL_ERROR"},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )
