"""Shared data models for the listing collector.

CRITICAL: All prices and volumes use Decimal in memory. Conversion to the
REAL columns of the downstream tables happens only inside the store.
"""

import time
from dataclasses import dataclass, field
from enum import Enum


class ErrorType(str, Enum):
    """Classification of a failed API call or work item."""

    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    BAD_REQUEST = "bad_request"
    PROCESSING_ERROR = "processing_error"

    @property
    def retryable(self) -> bool:
        return self in (
            ErrorType.RATE_LIMIT,
            ErrorType.SERVER_ERROR,
            ErrorType.NETWORK_ERROR,
        )


class ListingStatus(str, Enum):
    """Value of listing_analysis.data_status."""

    PENDING = "pending"
    ANALYZED = "analyzed"
    NO_DATA = "no_data"
    ERROR = "error"


class ListingSource(str, Enum):
    """Which resolver stage produced a listing timestamp."""

    METADATA = "metadata"
    HINT = "hint"
    DAILY = "daily"
    HOURLY = "hourly"
    MINUTE = "minute"


@dataclass(frozen=True)
class TargetSymbol:
    """Inbound description of a pair to monitor."""

    symbol: str
    base_asset: str
    quote_asset: str
    status: str = "active"

    @classmethod
    def from_pair(cls, symbol: str, quote_asset: str) -> "TargetSymbol":
        """Build from a pair name, deriving the base asset by stripping the quote."""
        symbol = symbol.upper()
        quote_asset = quote_asset.upper()
        if not symbol.endswith(quote_asset) or symbol == quote_asset:
            raise ValueError(f"{symbol} is not quoted in {quote_asset}")
        return cls(symbol=symbol, base_asset=symbol[: -len(quote_asset)], quote_asset=quote_asset)


@dataclass
class Symbol:
    """A row of the symbols table."""

    id: int
    name: str
    base_asset: str
    quote_asset: str
    status: str = "active"


@dataclass
class ListingRecord:
    """A row of the listing_analysis table (one per symbol)."""

    symbol_id: int
    listing_timestamp: int | None  # Unix milliseconds
    status: ListingStatus
    error_message: str | None = None
    retry_count: int = 0


@dataclass
class WorkItem:
    """One symbol handed to a worker, with an optional listing hint."""

    symbol: Symbol
    hint: int | None = None  # Unix milliseconds
    attempts: int = 0


@dataclass
class WorkFailure:
    """Structured per-item failure returned by WorkerPool.run."""

    symbol: str
    reason: str
    error_type: ErrorType = ErrorType.PROCESSING_ERROR
    attempts: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass
class ListingResolution:
    """Outcome of resolving one symbol's listing timestamp."""

    symbol: str
    status: ListingStatus
    listing_timestamp: int | None = None
    source: ListingSource | None = None
    error_message: str | None = None
    error_type: ErrorType | None = None


@dataclass
class CollectionSummary:
    """Counts reported at the end of a collection stage."""

    stage: str
    total: int = 0
    analyzed: int = 0
    no_data: int = 0
    skipped: int = 0
    failed: int = 0
    failures_by_reason: dict[str, list[str]] = field(default_factory=dict)

    def record_failure(self, symbol: str, reason: str) -> None:
        self.failed += 1
        self.failures_by_reason.setdefault(reason, []).append(symbol)
