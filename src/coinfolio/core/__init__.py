"""Core utilities and shared functionality."""

from coinfolio.core.timezone import (
    now_utc,
    to_utc,
    parse_datetime_utc,
    from_epoch_ms,
    to_epoch_ms,
    UTC,
)
from coinfolio.core.exceptions import (
    AppError,
    ValidationError,
    InvalidLedgerDataError,
    NotFoundError,
    NoDataAvailableError,
    ProviderError,
    TransientNetworkError,
    RateLimitedError,
    ProviderNotFoundError,
    MalformedResponseError,
    ProviderRequestError,
    RetryExhaustedError,
)
from coinfolio.core.rate_limiter import RateLimiter, Allowed, MustWaitFor
from coinfolio.core.retry import RetryPolicy, with_retry
from coinfolio.core.coalescer import RequestCoalescer

__all__ = [
    "now_utc",
    "to_utc",
    "parse_datetime_utc",
    "from_epoch_ms",
    "to_epoch_ms",
    "UTC",
    "AppError",
    "ValidationError",
    "InvalidLedgerDataError",
    "NotFoundError",
    "NoDataAvailableError",
    "ProviderError",
    "TransientNetworkError",
    "RateLimitedError",
    "ProviderNotFoundError",
    "MalformedResponseError",
    "ProviderRequestError",
    "RetryExhaustedError",
    "RateLimiter",
    "Allowed",
    "MustWaitFor",
    "RetryPolicy",
    "with_retry",
    "RequestCoalescer",
]
