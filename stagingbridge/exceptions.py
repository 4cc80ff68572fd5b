"""Custom exception hierarchy for the staging auth bridge.

Provides structured error types so callers (and the UI layer rendering
toasts) can tell a rate limit apart from a forbidden origin or a broken
network without string matching.
"""

from __future__ import annotations


class StagingAuthError(Exception):
    """Base exception for all staging auth bridge errors."""

    status_code: int | None = None
    error_type: str = "staging_auth_error"
    retryable: bool = False

    def __init__(self, message: str = "Staging authentication failed") -> None:
        self.message = message
        super().__init__(message)


class RateLimitedError(StagingAuthError):
    """Validation endpoint answered 429."""

    status_code = 429
    error_type = "rate_limited"
    retryable = True

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded. Please try again in {retry_after_seconds} seconds."
        )


class OriginForbiddenError(StagingAuthError):
    """Validation endpoint refused the calling origin (403)."""

    status_code = 403
    error_type = "origin_forbidden"

    def __init__(self, message: str = "Access forbidden. This domain is not authorized.") -> None:
        super().__init__(message)


class ValidationFailedError(StagingAuthError):
    """Any other non-2xx answer from the validation endpoint."""

    error_type = "validation_failed"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidResponseError(ValidationFailedError):
    """A 2xx body that does not match the validation response shape."""

    error_type = "invalid_response"

    def __init__(self, message: str = "Invalid response format from validation API") -> None:
        super().__init__(message)


class NoSessionError(StagingAuthError):
    """No authenticated studio user; never reaches the network."""

    error_type = "no_session"

    def __init__(self, message: str = "No user session found") -> None:
        super().__init__(message)


class NetworkFailureError(StagingAuthError):
    """Transport-level failure (DNS, connection reset, TLS)."""

    error_type = "network_failure"
    retryable = True


class RequestTimeoutError(NetworkFailureError):
    """The validation call exceeded the platform timeout."""

    error_type = "timeout"


class ConfigBuildError(StagingAuthError):
    """Remote configuration store could not be read.

    Logged by the resolver and never raised to callers.
    """

    error_type = "config_build_failure"
