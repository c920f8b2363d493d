"""
Shared error handling for the query cache.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error description format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


def _current_trace_id() -> Optional[str]:
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            return f"{span_context.trace_id:032x}"
    return None


class QueryCacheException(Exception):
    """Base exception for the query cache."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=_current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidQueryKeyError(QueryCacheException):
    """Raised when a query key cannot be serialized."""

    def __init__(self, message: str = "A valid query key is required", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_QUERY_KEY", message, details)


class ConfigurationError(QueryCacheException):
    """Raised for unknown or invalid query options."""

    def __init__(self, message: str = "Invalid query configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class InvalidTransitionError(QueryCacheException):
    """A state transition was requested that the state machine does not know.

    This is a defect in the caller, never a runtime condition to recover from.
    """

    def __init__(self, message: str = "Invalid query state transition", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TRANSITION", message, details)


class QueryCancelledError(QueryCacheException):
    """Sentinel raised inside a fetch attempt once it has been cancelled."""

    def __init__(self, message: str = "Query was cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__("QUERY_CANCELLED", message, details)


def describe_error(error: BaseException) -> ErrorResponse:
    """Describe any failure, including caller-raised fetch errors."""
    if isinstance(error, QueryCacheException):
        return error.to_response()

    return ErrorResponse(
        trace_id=_current_trace_id(),
        code="OPERATION_ERROR",
        message=str(error) or error.__class__.__name__,
        details={"type": error.__class__.__name__}
    )
