"""Custom exceptions for the relay client."""


class RelayException(Exception):
    """Base class for relay exceptions.

    Only programming errors and failures of the delegated API surface as
    exceptions. Rate-limit state, cache misses, webhook delivery failures
    and signature mismatches are reported as return values.
    """

    def __init__(self, message: str = "Relay error"):
        self.message = message
        super().__init__(message)


class InvalidConfigurationError(RelayException):
    """Raised when a limiter, cache or dispatcher is built with bad values."""


class UnknownOperationError(RelayException):
    """Raised when an operation name has no registered policy or endpoint."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")


class ApiError(RelayException):
    """Raised by the HTTP base client when the remote API call fails.

    Attributes:
        status_code: HTTP status of the failed response, or None when no
            response was received (timeout, connection failure).
        body: Raw response body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TokenRefreshError(RelayException):
    """Raised when a bearer token cannot be refreshed."""
