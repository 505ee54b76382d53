"""
Exceptions raised by the services and rendered by the error middleware.

Every error carries an ErrorCode, which decides the HTTP status, plus optional
details, suggestions and a Retry-After hint.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Business rule rejections
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    INVALID_ADD_ON = "INVALID_ADD_ON"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    HAS_DEPENDENTS = "HAS_DEPENDENTS"

    # Nothing was applied; the caller may retry
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    STORAGE_ERROR = "STORAGE_ERROR"


class BookingPlatformError(Exception):
    """Base class for every error the API reports in its error envelope."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error_code": self.error_code.value, "message": self.message}
        for key in ("details", "suggestions", "retry_after"):
            value = getattr(self, key)
            if value:
                result[key] = value
        return result


class ValidationError(BookingPlatformError):
    """Malformed or missing input, optionally broken down per field."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        if field_errors:
            kwargs["details"] = {"field_errors": field_errors}
        super().__init__(message, error_code=ErrorCode.VALIDATION_ERROR, **kwargs)
        self.field_errors = field_errors or {}


class AuthenticationError(BookingPlatformError):

    def __init__(self, message: str = "Authentication failed", **kwargs):
        kwargs.setdefault("suggestions", ["Send a valid business token as 'Authorization: Bearer <token>'"])
        super().__init__(message, error_code=ErrorCode.UNAUTHORIZED, **kwargs)


class NotFoundError(BookingPlatformError):
    """
    A record that does not exist or belongs to another business.

    The two cases are reported identically so callers cannot discover other
    businesses' IDs. Subclasses only name the resource.
    """

    resource_type = "resource"
    label = "Resource"

    def __init__(self, resource_id: str, **kwargs):
        super().__init__(
            f"{self.label} {resource_id} not found",
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": self.resource_type, "resource_id": resource_id},
            **kwargs
        )
        self.resource_id = resource_id


class ExperienceNotFoundError(NotFoundError):
    resource_type, label = "experience", "Experience"


class EventNotFoundError(NotFoundError):
    resource_type, label = "event", "Event"


class SessionNotFoundError(NotFoundError):
    resource_type, label = "session", "Session"


class GuestNotFoundError(NotFoundError):
    resource_type, label = "guest", "Guest"


class BookingNotFoundError(NotFoundError):
    resource_type, label = "booking", "Booking"


class AddOnNotFoundError(NotFoundError):
    resource_type, label = "add_on", "Add-on"


class BusinessLogicError(BookingPlatformError):
    """A well-formed request refused by a booking or catalog rule."""


class CapacityExceededError(BusinessLogicError):

    def __init__(self, spots_available: int, requested: Optional[int] = None, session_id: Optional[str] = None):
        super().__init__(
            f"Insufficient capacity: only {spots_available} spots available",
            error_code=ErrorCode.CAPACITY_EXCEEDED,
            details={"spots_available": spots_available, "requested": requested, "session_id": session_id},
            suggestions=["Try booking fewer tickets", "Choose another session"],
        )
        self.spots_available = spots_available
        self.requested = requested


class InvalidAddOnError(BusinessLogicError):
    """The add-on is inactive or not offered with the booking's event."""

    def __init__(self, add_on_id: str, event_id: Optional[str] = None):
        super().__init__(
            f"Add-on {add_on_id} is not available for this event",
            error_code=ErrorCode.INVALID_ADD_ON,
            details={"add_on_id": add_on_id, "event_id": event_id},
        )
        self.add_on_id = add_on_id


class IllegalTransitionError(BusinessLogicError):

    def __init__(self, booking_id: str, current_status: str, requested_status: str):
        super().__init__(
            f"Booking {booking_id} cannot move from {current_status} to {requested_status}",
            error_code=ErrorCode.ILLEGAL_TRANSITION,
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )
        self.current_status = current_status
        self.requested_status = requested_status


class BookingCancelledError(BusinessLogicError):
    """Quantity changes on a cancelled booking."""

    def __init__(self, booking_id: str):
        super().__init__(
            f"Booking {booking_id} is cancelled and can no longer be changed",
            error_code=ErrorCode.BOOKING_CANCELLED,
            details={"booking_id": booking_id},
            suggestions=["Create a new booking"],
        )


class HasDependentsError(BusinessLogicError):
    """Deleting a record that bookings still reference."""

    def __init__(self, resource_type: str, resource_id: str, dependent_count: int,
                 suggestions: Optional[List[str]] = None):
        super().__init__(
            f"Cannot delete {resource_type} {resource_id} with {dependent_count} existing bookings",
            error_code=ErrorCode.HAS_DEPENDENTS,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "dependent_count": dependent_count,
            },
            suggestions=suggestions or ["Cancel all bookings first"],
        )
        self.dependent_count = dependent_count


class ConflictError(BookingPlatformError):
    """A concurrent write invalidated a capacity decision; nothing was applied."""

    def __init__(self, message: str, retry_after: int = 1):
        super().__init__(
            message,
            error_code=ErrorCode.CONCURRENCY_CONFLICT,
            suggestions=["Please try again"],
            retry_after=retry_after,
        )


class StorageError(BookingPlatformError):
    """The database failed mid-operation; the transaction was rolled back."""

    def __init__(self, message: str = "Storage temporarily unavailable", retry_after: Optional[int] = None):
        super().__init__(
            message,
            error_code=ErrorCode.STORAGE_ERROR,
            suggestions=["Try again later"],
            retry_after=retry_after,
        )
