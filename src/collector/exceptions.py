"""Custom exceptions for the listing collector.

All request-layer and pipeline exceptions live here to avoid circular
imports between the exchange, data and discovery packages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from collector.models import ErrorType

if TYPE_CHECKING:
    from collector.data.models import Candle


class CollectorError(Exception):
    """Base exception for all collector errors."""


class ExchangeRequestError(CollectorError):
    """A single exchange call failed; carries its classification.

    Raised by BinanceClient when ccxt reports an error so the executor does
    not need to know about ccxt's exception hierarchy.
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.retry_after = retry_after


class RequestFailedError(CollectorError):
    """Terminal failure of a logical request after retries (or immediately
    for non-retryable errors)."""

    def __init__(self, message: str, error_type: ErrorType, attempts: int) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.attempts = attempts


class BackfillInterrupted(CollectorError):
    """Backfill stopped by a terminal request failure.

    ``candles`` holds everything collected before the failure so the caller
    can still persist it.
    """

    def __init__(
        self,
        symbol: str,
        candles: list[Candle],
        cause: RequestFailedError,
    ) -> None:
        super().__init__(f"Backfill for {symbol} interrupted: {cause}")
        self.symbol = symbol
        self.candles = candles
        self.cause = cause
        self.error_type = cause.error_type


class QueueClosedError(CollectorError):
    """Raised when enqueueing into a PersistenceQueue that is shutting down."""
