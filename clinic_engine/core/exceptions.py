from typing import Dict, Any, Optional
from fastapi import status
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)


class BaseCustomException(Exception):
    """Base class for engine exceptions.

    ``kind`` is the stable identifier UI layers key their localized
    messages on; ``message`` is an English fallback only.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.kind = kind or "ENGINE_ERROR"
        super().__init__(self.message)


class ValidationError(BaseCustomException):
    """Malformed input: bad time ranges, empty reason, disallowed slot duration"""

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            kind=kind or "VALIDATION_ERROR"
        )


class NotFoundError(BaseCustomException):
    """Exception for resource not found errors"""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
            kind=kind or "NOT_FOUND_ERROR"
        )


class ConflictError(BaseCustomException):
    """Overlapping leave, full slot or token collision detected at commit"""

    def __init__(
        self,
        message: str = "Resource conflict",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            kind=kind or "CONFLICT_ERROR"
        )


class OutsideHoursError(BaseCustomException):
    """Visit registered outside the practitioner's effective availability"""

    def __init__(
        self,
        message: str = "Practitioner is not available at this time",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            kind=kind or "OUTSIDE_HOURS_ERROR"
        )


class InvalidTransitionError(BaseCustomException):
    """Status change not allowed by the visit state graph"""

    def __init__(
        self,
        message: str = "Status transition not allowed",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
            kind=kind or "INVALID_TRANSITION_ERROR"
        )


class TransientError(BaseCustomException):
    """Storage contention that outlived the bounded internal retry"""

    def __init__(
        self,
        message: str = "Storage is busy, please retry",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            kind=kind or "TRANSIENT_ERROR"
        )


class DatabaseError(BaseCustomException):
    """Exception for database errors"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
            kind=kind or "DATABASE_ERROR"
        )


# Response model for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    kind: str
    message: str
    details: Optional[Dict[str, Any]] = None


def create_error_response(exception: BaseCustomException) -> Dict[str, Any]:
    """Create standardized error response"""
    response = {
        "kind": exception.kind,
        "message": exception.message,
    }

    if exception.details:
        response["details"] = exception.details

    return response


def create_validation_error_response(errors: list) -> Dict[str, Any]:
    """Reshape request validation errors into the standard payload"""
    field_errors: Dict[str, list] = {}
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        field_errors.setdefault(location or "body", []).append(error.get("msg", "invalid"))

    return create_error_response(
        ValidationError(
            message="Request validation failed",
            details={"fields": field_errors}
        )
    )


def handle_database_error(error: Exception, operation: str = "database operation") -> DatabaseError:
    """Handle database errors and convert to DatabaseError"""
    logger.error(f"Database error during {operation}: {error}")

    error_message = "Database operation failed"
    if "connection" in str(error).lower():
        error_message = "Database connection failed"
    elif "timeout" in str(error).lower():
        error_message = "Database operation timed out"
    elif "constraint" in str(error).lower():
        error_message = "Database constraint violation"

    return DatabaseError(
        message=error_message,
        details={"operation": operation},
        kind="DATABASE_ERROR"
    )
