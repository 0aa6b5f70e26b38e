"""Data models for candles and persistence batches.

CRITICAL: All monetary values use Decimal. The raw kline row carries prices
as strings, which convert to Decimal without rounding.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from collector.models import ListingRecord, TargetSymbol


@dataclass(frozen=True)
class Candle:
    """A single kline for one time bucket."""

    open_time: int  # Unix milliseconds
    close_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    quote_volume: Decimal = Decimal("0")
    trade_count: int = 0
    taker_buy_base_volume: Decimal = Decimal("0")
    taker_buy_quote_volume: Decimal = Decimal("0")

    @classmethod
    def from_kline(cls, row: list) -> "Candle":
        """Build from a Binance kline array.

        Layout: [openTime, open, high, low, close, volume, closeTime,
        quoteVolume, tradeCount, takerBuyBase, takerBuyQuote, ignore].
        """
        if len(row) < 11:
            raise ValueError(f"Kline row has {len(row)} fields, expected at least 11")
        try:
            return cls(
                open_time=int(row[0]),
                close_time=int(row[6]),
                open=Decimal(str(row[1])),
                high=Decimal(str(row[2])),
                low=Decimal(str(row[3])),
                close=Decimal(str(row[4])),
                volume=Decimal(str(row[5])),
                quote_volume=Decimal(str(row[7])),
                trade_count=int(row[8]),
                taker_buy_base_volume=Decimal(str(row[9])),
                taker_buy_quote_volume=Decimal(str(row[10])),
            )
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Malformed kline row: {row!r}") from e

    @property
    def has_trading(self) -> bool:
        """True for genuine activity: non-zero volume and a positive price.

        Exchanges pre-register symbols with placeholder candles that have
        zero volume, so the first returned candle is not the listing.
        """
        return self.volume > 0 and self.open > 0


@dataclass
class SymbolBatch:
    """Upsert of tradable pairs into the symbols table."""

    symbols: list[TargetSymbol]


@dataclass
class ListingBatch:
    """Upsert of listing analysis results."""

    records: list[ListingRecord]


@dataclass
class CandleBatch:
    """Idempotent insert of one symbol's candles."""

    symbol_id: int
    symbol: str
    candles: list[Candle] = field(default_factory=list)


WriteBatch = SymbolBatch | ListingBatch | CandleBatch


@dataclass
class BackfillResult:
    """Outcome of collecting one symbol's klines."""

    symbol: str
    status: str  # collected | existing | no_data | invalid_data
    candles_saved: int = 0
    coverage: float = 0.0
