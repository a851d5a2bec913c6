"""Application-level exceptions."""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, code: str = "APP_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code=code)


class InvalidLedgerDataError(ValidationError):
    """Raised when ledger data (import payload or edit) is structurally invalid.

    The ledger is never partially mutated when this is raised.
    """

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_LEDGER_DATA")


class NotFoundError(AppError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} not found: {identifier}", code="NOT_FOUND")


class NoDataAvailableError(AppError):
    """Raised when neither a live fetch nor the stale cache can produce data."""

    def __init__(self, what: str):
        super().__init__(f"No data available for {what}", code="NO_DATA_AVAILABLE")


class ProviderError(AppError):
    """Base exception for market-data provider failures.

    `retryable` tells the retry executor whether another attempt may succeed.
    """

    retryable = False

    def __init__(
        self,
        provider: str,
        message: str,
        code: str = "PROVIDER_ERROR",
        retryable: Optional[bool] = None,
    ):
        self.provider = provider
        if retryable is not None:
            self.retryable = retryable
        super().__init__(f"[{provider}] {message}", code=code)


class TransientNetworkError(ProviderError):
    """Network error, timeout or 5xx response. Safe to retry."""

    retryable = True

    def __init__(self, provider: str, message: str):
        super().__init__(provider, message, code="PROVIDER_UNAVAILABLE")


class RateLimitedError(ProviderError):
    """Provider answered 429, or the local budget refused the call."""

    retryable = True

    def __init__(
        self,
        provider: str,
        message: str = "rate limit exceeded",
        retry_after: Optional[float] = None,
        retryable: Optional[bool] = None,
    ):
        self.retry_after = retry_after
        super().__init__(provider, message, code="RATE_LIMITED", retryable=retryable)


class ProviderNotFoundError(ProviderError):
    """Provider has no data for the requested resource."""

    def __init__(self, provider: str, resource: str):
        super().__init__(provider, f"not found: {resource}", code="PROVIDER_NOT_FOUND")


class MalformedResponseError(ProviderError):
    """Provider returned a payload that cannot be normalized."""

    def __init__(self, provider: str, message: str):
        super().__init__(provider, message, code="MALFORMED_RESPONSE")


class ProviderRequestError(ProviderError):
    """Provider rejected the request (4xx other than 404/429)."""

    def __init__(self, provider: str, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(
            provider,
            f"HTTP {status_code} {message}".strip(),
            code="PROVIDER_REQUEST_REJECTED",
        )


class RetryExhaustedError(ProviderError):
    """All retry attempts failed; wraps the last error."""

    def __init__(self, last_error: ProviderError, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            last_error.provider,
            f"gave up after {attempts} attempts: {last_error.message}",
            code="RETRY_EXHAUSTED",
        )
