"""
Custom exceptions for the LogRelay service.

Every pipeline stage raises its own error type. Each carries the HTTP status
code and error code the front door answers with, plus details that are safe
to return to the caller (never credentials).
"""

from typing import Any, Dict, List, Optional


class LogRelayException(Exception):
    """Base exception for LogRelay service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(LogRelayException):
    """Raised when required settings are missing."""

    def __init__(self, missing: List[str]) -> None:
        super().__init__(
            message="Missing settings: " + ", ".join(missing),
            status_code=400,
            error_code="missing_settings",
            details={"missing": list(missing)},
        )
        self.missing = list(missing)


class AuthAcquisitionError(LogRelayException):
    """Raised when a bearer token cannot be obtained from the token endpoint."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="auth_acquisition_error",
            details=details,
        )


class SourceFetchError(LogRelayException):
    """Raised when the log API is unreachable or rejects the request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="source_fetch_error",
            details=details,
        )


class DeliveryError(LogRelayException):
    """Raised when the webhook is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="delivery_error",
            details=details,
        )


class CheckpointStoreError(LogRelayException):
    """
    Raised when the checkpoint store cannot be read or written.

    A write failure at the end of a run means the reported run outcome and
    the persisted cursor may disagree.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="checkpoint_store_error",
            details=details,
        )
