"""Error taxonomy and classification utilities for mutations and queries."""

from enum import Enum

from pydantic import BaseModel


class ErrorCategory(Enum):
    """Categories of errors that can occur while handling a request."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INVARIANT_VIOLATION = "invariant_violation"
    FATAL = "fatal"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_FORBIDDEN = "ERR_FORBIDDEN"
    ERR_INVALID_INPUT = "ERR_INVALID_INPUT"
    ERR_CONFLICT = "ERR_CONFLICT"
    ERR_INVARIANT_VIOLATION = "ERR_INVARIANT_VIOLATION"
    ERR_FATAL = "ERR_FATAL"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


class TaskgateError(Exception):
    """Base class for errors that carry a user-facing reason."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NotFoundError(TaskgateError):
    """The requested id does not resolve to an entity."""

    category = ErrorCategory.NOT_FOUND


class ForbiddenError(TaskgateError):
    """The access policy denied the action."""

    category = ErrorCategory.FORBIDDEN


class InvariantViolationError(ForbiddenError):
    """An invariant guard blocked an otherwise authorized action."""

    category = ErrorCategory.INVARIANT_VIOLATION


class InvalidInputError(TaskgateError):
    """Field-level validation failed."""

    category = ErrorCategory.INVALID_INPUT


class ConflictError(TaskgateError):
    """The target changed between read and write."""

    category = ErrorCategory.CONFLICT


class FatalMutationError(TaskgateError):
    """Audit write or commit failed after authorization passed; the mutation was rolled back."""

    category = ErrorCategory.FATAL


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised while handling a request

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    reason = exception.reason if isinstance(exception, TaskgateError) else str(exception)

    if isinstance(exception, InvariantViolationError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVARIANT_VIOLATION,
            message=reason,
            suggestion="Resolve the blocking condition first, then retry.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, ForbiddenError) or isinstance(exception, PermissionError):
        return ErrorResponse(
            code=ErrorCode.ERR_FORBIDDEN,
            message=f"You don't have permission for this action: {reason}",
            suggestion="Contact an administrator if you think this is an error.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, NotFoundError | KeyError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message=reason.strip("'\""),
            suggestion="Check the id and that the entity still exists.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidInputError | ValueError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_INPUT,
            message=reason,
            suggestion="Correct the highlighted fields and submit again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ConflictError):
        return ErrorResponse(
            code=ErrorCode.ERR_CONFLICT,
            message=reason,
            suggestion="Reload the latest version and retry your change.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, FatalMutationError):
        return ErrorResponse(
            code=ErrorCode.ERR_FATAL,
            message="The change could not be saved and was rolled back.",
            suggestion="Please try again later. If the problem persists, contact support.",
            severity=ErrorSeverity.CRITICAL,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
