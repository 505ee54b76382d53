"""
Maps exceptions to HTTP responses in the shared error envelope.

Rejections the client can act on (validation, missing resources, business
rules) are logged at INFO. Conflicts are logged as warnings and storage faults
or unexpected exceptions as errors.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.exceptions import (
    BookingPlatformError,
    BusinessLogicError,
    ErrorCode,
    NotFoundError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.CAPACITY_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_ADD_ON: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ILLEGAL_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.BOOKING_CANCELLED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.HAS_DEPENDENTS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.STORAGE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

CLIENT_ERRORS = (ValidationError, NotFoundError, BusinessLogicError)


def error_response(
    exc: BookingPlatformError,
    error_id: str,
    debug_info: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """Render a platform error as {"error": ..., "error_id": ..., "timestamp": ...}."""
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.error_code == ErrorCode.UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    content: Dict[str, Any] = {
        "error": exc.to_dict(),
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    if debug_info:
        content["debug"] = debug_info

    return JSONResponse(
        status_code=STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=content,
        headers=headers,
    )


def field_errors_from(errors: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Group pydantic error messages by dotted field path."""
    field_errors: Dict[str, List[str]] = {}
    for error in errors:
        path = ".".join(str(part) for part in error["loc"] if part != "body") or "body"
        field_errors.setdefault(path, []).append(error["msg"])
    return field_errors


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings are 400 validation errors, like the service layer's."""
    logger.info(f"Request validation failed for {request.method} {request.url.path}")
    error = ValidationError("Request validation failed", field_errors=field_errors_from(exc.errors()))
    return error_response(error, str(uuid4()))


class ErrorHandlerMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid4())
            error = self.translate(exc)
            self._log(request, exc, error, error_id)

            debug_info = None
            if self.debug and not isinstance(exc, BookingPlatformError):
                debug_info = {"exception": str(exc), "traceback": traceback.format_exc()}
            return error_response(error, error_id, debug_info)

    def translate(self, exc: Exception) -> BookingPlatformError:
        """The platform error a raised exception is reported as."""
        if isinstance(exc, BookingPlatformError):
            return exc
        if isinstance(exc, IntegrityError):
            return ValidationError("Data integrity constraint violation", details={"error_type": type(exc).__name__})
        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            return StorageError(retry_after=30)
        return BookingPlatformError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None,
        )

    def _log(self, request: Request, exc: Exception, error: BookingPlatformError, error_id: str) -> None:
        extra = {
            "error_id": error_id,
            "error_code": error.error_code.value,
            "request": {
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
            "details": error.details,
        }

        if isinstance(exc, CLIENT_ERRORS):
            logger.info(f"Request rejected [{error_id}]: {error.message}", extra=extra)
        elif isinstance(exc, BookingPlatformError) and not isinstance(exc, StorageError):
            logger.warning(f"Request failed [{error_id}]: {error.message}", extra=extra)
        else:
            logger.error(f"Request failed [{error_id}]: {exc}", extra=extra, exc_info=exc)
