"""Coarse-to-fine discovery of a symbol's first genuine trading minute.

The first candle an exchange returns is not reliable: symbols are often
pre-registered with placeholder candles that have zero volume. The resolver
looks for the first candle with volume > 0 and a positive open price,
narrowing the search in stages:

    metadata onboardDate -> (hint | daily scan) -> hourly -> minute

Refinement stages are best-effort. When one fails the coarser estimate is
kept, so a result is always either a timestamp, ``no_data`` or ``error``.
"""

import time
from collections.abc import Callable

from collector.config import CollectionSettings
from collector.data.models import Candle
from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.exceptions import RequestFailedError
from collector.exchange.binance_client import BinanceClient
from collector.exchange.executor import RequestExecutor
from collector.exchange.types import KLINES_WEIGHT
from collector.logging import get_logger
from collector.models import ListingResolution, ListingSource, ListingStatus, WorkItem

logger = get_logger(__name__)

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

DAILY_LIMIT = 1000
HOURLY_LIMIT = 100
MINUTE_LIMIT = 1000

HOURLY_BEFORE_MS = 24 * HOUR_MS
HOURLY_AFTER_MS = 48 * HOUR_MS
MINUTE_WINDOW_MS = HOUR_MS


def first_trading_candle(rows: list) -> Candle | None:
    """First row with real activity, or None."""
    for row in rows or []:
        candle = Candle.from_kline(row)
        if candle.has_trading:
            return candle
    return None


class ListingDateResolver:
    """Resolves listing timestamps for WorkItems.

    Args:
        client: Binance REST client.
        executor: Shared request executor (rate limiting and retries).
        exchange_info: Cached exchangeInfo for the metadata stage.
        settings: Supplies the daily lookback window.
        clock: Wall-clock time source in seconds.
    """

    def __init__(
        self,
        client: BinanceClient,
        executor: RequestExecutor,
        exchange_info: ExchangeInfoProvider,
        settings: CollectionSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._executor = executor
        self._exchange_info = exchange_info
        self._lookback_ms = settings.lookback_days * DAY_MS
        self._clock = clock

    async def resolve(self, item: WorkItem) -> ListingResolution:
        symbol = item.symbol.name

        onboard = await self._onboard_date(symbol)
        if onboard is not None:
            logger.info("listing_from_metadata", symbol=symbol, listing_timestamp=onboard)
            return ListingResolution(
                symbol=symbol,
                status=ListingStatus.ANALYZED,
                listing_timestamp=onboard,
                source=ListingSource.METADATA,
            )

        if item.hint is not None:
            estimate, source = item.hint, ListingSource.HINT
        else:
            try:
                daily = await self._daily_estimate(symbol)
            except RequestFailedError as e:
                logger.warning(
                    "listing_daily_scan_failed",
                    symbol=symbol,
                    error_type=e.error_type.value,
                    error=str(e),
                )
                return ListingResolution(
                    symbol=symbol,
                    status=ListingStatus.ERROR,
                    error_message=str(e),
                    error_type=e.error_type,
                )
            if daily is None:
                logger.info("listing_no_data", symbol=symbol)
                return ListingResolution(symbol=symbol, status=ListingStatus.NO_DATA)
            estimate, source = daily, ListingSource.DAILY

        estimate, source = await self._refine(
            symbol, "1h", estimate - HOURLY_BEFORE_MS, estimate + HOURLY_AFTER_MS,
            HOURLY_LIMIT, estimate, source, ListingSource.HOURLY,
        )
        estimate, source = await self._refine(
            symbol, "1m", estimate - MINUTE_WINDOW_MS, estimate + MINUTE_WINDOW_MS,
            MINUTE_LIMIT, estimate, source, ListingSource.MINUTE,
        )

        logger.info(
            "listing_resolved",
            symbol=symbol,
            listing_timestamp=estimate,
            source=source.value,
        )
        return ListingResolution(
            symbol=symbol,
            status=ListingStatus.ANALYZED,
            listing_timestamp=estimate,
            source=source,
        )

    # ──────────────────────────────────────────────
    # Stages
    # ──────────────────────────────────────────────

    async def _onboard_date(self, symbol: str) -> int | None:
        try:
            info = await self._exchange_info.symbol_info(symbol)
        except RequestFailedError as e:
            logger.debug("exchange_info_unavailable", symbol=symbol, error=str(e))
            return None
        if not info:
            return None
        onboard = info.get("onboardDate")
        if not onboard:
            return None
        try:
            return int(onboard)
        except (TypeError, ValueError):
            return None

    async def _daily_estimate(self, symbol: str) -> int | None:
        now_ms = int(self._clock() * 1000)
        rows = await self._fetch(symbol, "1d", now_ms - self._lookback_ms, now_ms, DAILY_LIMIT)
        candle = first_trading_candle(rows)
        return candle.open_time if candle else None

    async def _refine(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int,
        estimate: int,
        source: ListingSource,
        refined_source: ListingSource,
    ) -> tuple[int, ListingSource]:
        """Narrow ``estimate`` using ``interval`` candles; keep it on failure."""
        try:
            rows = await self._fetch(symbol, interval, start_ms, end_ms, limit)
        except RequestFailedError as e:
            logger.debug(
                "listing_refinement_failed",
                symbol=symbol,
                interval=interval,
                error_type=e.error_type.value,
                error=str(e),
            )
            return estimate, source
        candle = first_trading_candle(rows)
        if candle is None:
            return estimate, source
        return candle.open_time, refined_source

    async def _fetch(
        self, symbol: str, interval: str, start_ms: int, end_ms: int, limit: int
    ) -> list:
        return await self._executor.execute(
            lambda: self._client.fetch_klines(symbol, interval, start_ms, end_ms, limit),
            weight=KLINES_WEIGHT,
            operation=f"klines:{symbol}:{interval}",
        )
