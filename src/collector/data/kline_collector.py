"""Kline collection stage: backfill the first hours after each new listing.

Selects analyzed listings within the recent window that have no klines yet,
skips symbols that are no longer trading, backfills
``[listing, listing + collection_hours)`` at the configured interval and
persists each symbol's candles as one CandleBatch through the
PersistenceQueue.
"""

import time
from collections.abc import Callable

from collector.config import CollectionSettings
from collector.data.backfiller import HistoricalBackfiller
from collector.data.models import BackfillResult, Candle, CandleBatch
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore
from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.exceptions import BackfillInterrupted, RequestFailedError
from collector.logging import get_logger
from collector.models import CollectionSummary, Symbol, WorkFailure, WorkItem
from collector.workers.pool import WorkerPool

logger = get_logger(__name__)

HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS
HIGH_ZERO_VOLUME_PERCENT = 90.0

_INTERVAL_UNITS_MS = {
    "m": 60_000,
    "h": HOUR_MS,
    "d": DAY_MS,
    "w": 7 * DAY_MS,
}


def interval_to_ms(interval: str) -> int:
    """Convert a Binance interval such as ``1m`` or ``4h`` to milliseconds."""
    try:
        return int(interval[:-1]) * _INTERVAL_UNITS_MS[interval[-1]]
    except (KeyError, ValueError, IndexError):
        raise ValueError(f"Unsupported kline interval: {interval!r}") from None


class KlineCollector:
    """Backfills candle history for recently listed symbols."""

    def __init__(
        self,
        exchange_info: ExchangeInfoProvider,
        store: HistoricalStore,
        queue: PersistenceQueue,
        backfiller: HistoricalBackfiller,
        pool: WorkerPool,
        settings: CollectionSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._exchange_info = exchange_info
        self._store = store
        self._queue = queue
        self._backfiller = backfiller
        self._pool = pool
        self._settings = settings
        self._interval = settings.kline_interval
        self._interval_ms = interval_to_ms(settings.kline_interval)
        self._window_ms = settings.collection_hours * HOUR_MS
        self._clock = clock

    async def collect(
        self,
        days_back: int | None = None,
        names: list[str] | None = None,
    ) -> CollectionSummary:
        """Collect klines for listings newer than ``days_back`` days,
        restricted to ``names`` when given."""
        days = days_back if days_back is not None else self._settings.recent_listing_days
        since_ms = self._now_ms() - days * DAY_MS
        listings = await self._store.get_new_listings(since_ms)
        if names is not None:
            wanted = set(names)
            listings = [(s, ts) for s, ts in listings if s.name in wanted]
        listings = await self._filter_trading(listings)

        summary = CollectionSummary(stage="kline_collection", total=len(listings))
        logger.info(
            "kline_collection_started",
            listings=len(listings),
            days_back=days,
            interval=self._interval,
        )
        if not listings:
            return summary

        items = [WorkItem(symbol=symbol, hint=listing_ms) for symbol, listing_ms in listings]
        results = await self._pool.run(items, self.collect_symbol)

        for result in results:
            if isinstance(result, WorkFailure):
                reason = "shutdown" if result.reason == "shutdown" else result.error_type.value
                summary.record_failure(result.symbol, reason)
            elif result.status == "collected":
                summary.analyzed += 1
            elif result.status == "existing":
                summary.skipped += 1
            elif result.status == "no_data":
                summary.no_data += 1
            else:
                summary.record_failure(result.symbol, result.status)

        logger.info(
            "kline_collection_finished",
            total=summary.total,
            collected=summary.analyzed,
            skipped=summary.skipped,
            no_data=summary.no_data,
            failed=summary.failed,
        )
        return summary

    async def collect_symbol(self, item: WorkItem) -> BackfillResult:
        """Backfill and persist one symbol. ``item.hint`` is its listing time."""
        symbol = item.symbol
        if item.hint is None:
            return BackfillResult(symbol=symbol.name, status="no_data")

        if await self._store.has_candles(symbol.id):
            logger.debug("klines_already_collected", symbol=symbol.name)
            return BackfillResult(symbol=symbol.name, status="existing")

        start_ms = item.hint
        end_ms = min(start_ms + self._window_ms - 1, self._now_ms())
        if end_ms < start_ms:
            return BackfillResult(symbol=symbol.name, status="no_data")

        try:
            candles = await self._backfiller.backfill(symbol.name, self._interval, start_ms, end_ms)
        except BackfillInterrupted as e:
            if e.candles:
                saved = await self._save(symbol, e.candles)
                logger.warning(
                    "partial_klines_saved",
                    symbol=symbol.name,
                    saved=saved,
                    error_type=e.error_type.value,
                )
            raise
        except ValueError as e:
            logger.warning("invalid_kline_data", symbol=symbol.name, error=str(e))
            return BackfillResult(symbol=symbol.name, status="invalid_data")

        if not candles:
            logger.info("no_klines_in_window", symbol=symbol.name, start=start_ms, end=end_ms)
            return BackfillResult(symbol=symbol.name, status="no_data")

        coverage = self._log_quality(symbol.name, candles, start_ms, end_ms)
        saved = await self._save(symbol, candles)
        logger.info(
            "klines_collected",
            symbol=symbol.name,
            candles=len(candles),
            saved=saved,
            coverage=round(coverage, 1),
        )
        return BackfillResult(
            symbol=symbol.name,
            status="collected",
            candles_saved=saved,
            coverage=coverage,
        )

    async def _filter_trading(self, listings: list[tuple[Symbol, int]]) -> list[tuple[Symbol, int]]:
        if not listings:
            return listings
        try:
            trading = await self._exchange_info.trading_symbols()
        except RequestFailedError as e:
            logger.warning("trading_filter_unavailable", error=str(e), listings=len(listings))
            return listings
        kept = [(s, ts) for s, ts in listings if s.name in trading]
        if len(kept) != len(listings):
            logger.info(
                "inactive_listings_skipped",
                skipped=len(listings) - len(kept),
                remaining=len(kept),
            )
        return kept

    def _log_quality(self, symbol: str, candles: list[Candle], start_ms: int, end_ms: int) -> float:
        """Return coverage percent and warn on mostly empty candles."""
        zero_volume = sum(1 for c in candles if c.volume == 0)
        zero_volume_percent = zero_volume / len(candles) * 100
        expected = max(1, (end_ms - start_ms + 1) // self._interval_ms)
        coverage = len(candles) / expected * 100
        if zero_volume_percent > HIGH_ZERO_VOLUME_PERCENT:
            logger.warning(
                "high_zero_volume",
                symbol=symbol,
                zero_volume_percent=round(zero_volume_percent, 1),
            )
        return coverage

    async def _save(self, symbol: Symbol, candles: list[Candle]) -> int:
        return await self._queue.enqueue(CandleBatch(symbol.id, symbol.name, candles))

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
