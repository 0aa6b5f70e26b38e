"""Failure classification for exchange calls.

Every exception raised by a request is mapped to exactly one ErrorType.
ccxt already translates Binance's HTTP statuses and error codes into its
exception hierarchy (429 and code -1003 become RateLimitExceeded, 418
becomes DDoSProtection, 5xx becomes ExchangeNotAvailable), so most of the
work is picking the right branch of that tree. Order matters:
DDoSProtection and ExchangeNotAvailable are both NetworkError subclasses,
and NetworkError is itself an OperationFailed.
"""

from collections.abc import Mapping

import ccxt.async_support

from collector.exceptions import ExchangeRequestError, RequestFailedError
from collector.models import ErrorType

_RATE_LIMIT_MARKERS = ("429", "-1003", "rate limit", "too many requests")


def classify_error(exc: BaseException) -> ErrorType:
    """Return the ErrorType for an exception raised by a request function."""
    if isinstance(exc, (ExchangeRequestError, RequestFailedError)):
        return exc.error_type

    if isinstance(exc, ccxt.async_support.DDoSProtection):
        return ErrorType.RATE_LIMIT
    if isinstance(exc, ccxt.async_support.ExchangeNotAvailable):
        return ErrorType.SERVER_ERROR
    if isinstance(exc, ccxt.async_support.NetworkError):
        return ErrorType.NETWORK_ERROR
    # Binance 5xx responses with a JSON body (code -1001) raise the parent of
    # NetworkError directly
    if isinstance(exc, ccxt.async_support.OperationFailed):
        return ErrorType.SERVER_ERROR
    if isinstance(exc, ccxt.async_support.BaseError):
        message = str(exc).lower()
        if any(marker in message for marker in _RATE_LIMIT_MARKERS):
            return ErrorType.RATE_LIMIT
        return ErrorType.BAD_REQUEST

    # HTTP-client exceptions that expose a status code
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return classify_status(status)

    if isinstance(exc, (TimeoutError, OSError)):
        return ErrorType.NETWORK_ERROR

    return ErrorType.BAD_REQUEST


def classify_status(status: int) -> ErrorType:
    """Map an HTTP status code onto the taxonomy."""
    if status in (418, 429):
        return ErrorType.RATE_LIMIT
    if status >= 500:
        return ErrorType.SERVER_ERROR
    return ErrorType.BAD_REQUEST


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Read a Retry-After header (seconds) case-insensitively."""
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                seconds = float(value)
            except (TypeError, ValueError):
                return None
            return seconds if seconds >= 0 else None
    return None
