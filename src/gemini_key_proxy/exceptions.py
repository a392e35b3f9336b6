"""Consolidated exception hierarchy for the Gemini key proxy.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum for type safety and autocompletion.
"""

from enum import StrEnum
from typing import Any

import orjson
from starlette import status


class ErrorType(StrEnum):
    """Error type codes for API responses."""

    INVALID_REQUEST = "invalid_request_error"
    NOT_FOUND = "not_found_error"
    NO_AVAILABLE_CREDENTIAL = "no_available_credential"
    SERVICE_UNAVAILABLE = "service_unavailable_error"
    INTERNAL = "internal_error"
    STREAM = "stream_error"
    STORE = "credential_store_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class ProxyError(Exception):
    """Base exception for all proxy errors.

    Supports HTTP status codes and structured error details. Upstream error
    types are free-form strings, so `error_type` keeps unknown values as-is.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}

    @property
    def error_type_name(self) -> str:
        """Error type as a plain string."""
        return str(self.error_type)

    def to_payload(self) -> dict[str, Any]:
        """Render the `{error: {message, type}}` body returned to callers."""
        return {"error": {"message": self.message, "type": self.error_type_name}}


# ============================================================================
# Pool Errors
# ============================================================================


class NoAvailableCredentialError(ProxyError):
    """Every credential is disabled or cooling down (503)."""

    def __init__(self, message: str = "No available API keys") -> None:
        super().__init__(
            message,
            error_type=ErrorType.NO_AVAILABLE_CREDENTIAL,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class CredentialStoreError(ProxyError):
    """The credential store could not be read or written (500)."""

    def __init__(self, message: str = "Credential store unavailable") -> None:
        super().__init__(
            message,
            error_type=ErrorType.STORE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


# ============================================================================
# Upstream Errors
# ============================================================================


class UpstreamError(ProxyError):
    """Base exception for failed upstream calls.

    Carries the upstream status and headers so the pool can read
    rate-limit reset hints from them.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = ErrorType.INTERNAL,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message, error_type=error_type, status_code=status_code)
        self.headers = headers or {}


class UpstreamRateLimitedError(UpstreamError):
    """Upstream answered 429; recoverable by rotating to another key."""

    retryable = True


class UpstreamServerError(UpstreamError):
    """Upstream answered 5xx; recoverable by rotation and retry."""

    retryable = True


class UpstreamClientError(UpstreamError):
    """Upstream answered 4xx other than 429; surfaced immediately."""


class UpstreamTransportError(UpstreamError):
    """No upstream response at all (connect failure, timeout)."""


class StreamInterruptedError(ProxyError):
    """Upstream stream broke after bytes were already sent to the caller."""

    def __init__(self, message: str = "Upstream stream interrupted") -> None:
        super().__init__(
            message,
            error_type=ErrorType.STREAM,
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    def to_sse(self) -> bytes:
        """Encode as a final server-sent event."""
        return b"data: " + orjson.dumps(self.to_payload()) + b"\n\n"


# ============================================================================
# API Errors (Client-facing)
# ============================================================================


class ValidationError(ProxyError):
    """Validation error (400)."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_REQUEST,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(ProxyError):
    """Not found error (404)."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            message,
            error_type=ErrorType.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ServiceUnavailableError(ProxyError):
    """Service unavailable error (503)."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class ConfigurationError(ProxyError):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_REQUEST,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
