"""
Webhook Relay Exceptions

Domain-specific exceptions for the ingestion and dispatch pipeline.
Infrastructure errors are translated into these at the boundary with
exception chaining so the original context is preserved.
"""

from typing import Optional, Any, Dict


class RelayException(Exception):
    """Base exception for relay errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class AdmissionRejected(RelayException):
    """Raised when an inbound event fails an admission precondition."""

    def __init__(
        self,
        reason: str,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.reason = reason
        self.status_code = status_code
        self.headers = headers or {}
        super().__init__(
            message=reason,
            error_code="ADMISSION_REJECTED",
            details={"status_code": status_code},
        )


class RateLimiterStoreError(RelayException):
    """Raised when the sliding window store cannot complete an operation."""

    def __init__(
        self,
        message: str = "Rate limiter store unavailable",
        key: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if key:
            details["key"] = key
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="RATE_LIMITER_STORE_ERROR", details=details
        )
        if original_error:
            self.__cause__ = original_error


class EventQueueError(RelayException):
    """Raised when the queue broker rejects or cannot perform an operation."""

    def __init__(
        self,
        operation: str,
        message: Optional[str] = None,
        job_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if job_id:
            details["job_id"] = job_id
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message or f"Event queue operation '{operation}' failed",
            error_code="EVENT_QUEUE_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class CollaboratorError(RelayException):
    """
    Raised when an account, destination or log collaborator fails.

    During dispatch this escalates to a job-level failure and consumes the
    queue retry budget.
    """

    def __init__(
        self,
        collaborator: str,
        message: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"collaborator": collaborator}
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message or f"Collaborator '{collaborator}' failed",
            error_code="COLLABORATOR_ERROR",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class RedisUnavailableError(RelayException):
    """Raised when the shared Redis pool cannot be created or reached."""

    def __init__(
        self,
        message: str = "Redis connection failed",
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="REDIS_UNAVAILABLE", details=details
        )
        if original_error:
            self.__cause__ = original_error
