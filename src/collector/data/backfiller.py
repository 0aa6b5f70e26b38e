"""Paginated kline backfill with page-boundary deduplication.

Binance returns at most ``limit`` klines starting at ``startTime``. When a
page comes back full there may be more data, so the last row of the page
is held back and re-requested as the first row of the next page: the cursor
moves to the last emitted candle's closeTime + 1, which is exactly the
held-back candle's openTime. A short page means the window is exhausted.

Emitted candles have strictly increasing open times, so a symbol's backfill
never contains two candles with the same open time.
"""

import asyncio
from collections.abc import Awaitable, Callable

from collector.config import CollectionSettings
from collector.data.models import Candle
from collector.exceptions import BackfillInterrupted, RequestFailedError
from collector.exchange.binance_client import BinanceClient
from collector.exchange.executor import RequestExecutor
from collector.exchange.types import KLINES_WEIGHT
from collector.logging import get_logger
from collector.models import ErrorType

logger = get_logger(__name__)


class HistoricalBackfiller:
    """Pages through kline history for one symbol and time window.

    Pages are fetched strictly one after another because each cursor
    depends on the previous page. Concurrency across symbols comes from the
    WorkerPool, not from here.
    """

    def __init__(
        self,
        client: BinanceClient,
        executor: RequestExecutor,
        settings: CollectionSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._executor = executor
        self._page_size = settings.page_size
        self._max_pages = settings.max_pages
        self._max_rate_limit_resumes = settings.max_rate_limit_resumes
        self._rate_limit_resume_delay = settings.rate_limit_resume_delay
        self._sleep = sleep

    async def backfill(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
    ) -> list[Candle]:
        """Return every candle with ``start_ms <= open_time <= end_ms``, ordered.

        Raises BackfillInterrupted (carrying the candles collected so far)
        when a page request fails terminally for a reason other than an
        exhausted rate limit.
        """
        candles: list[Candle] = []
        cursor = start_ms
        last_open_time: int | None = None
        pages = 0
        resumes = 0

        while cursor <= end_ms:
            if pages >= self._max_pages:
                logger.warning(
                    "backfill_page_cap_reached",
                    symbol=symbol,
                    pages=pages,
                    candles=len(candles),
                    cursor=cursor,
                )
                break

            try:
                rows = await self._fetch_page(symbol, interval, cursor, end_ms)
            except RequestFailedError as e:
                if (
                    e.error_type is ErrorType.RATE_LIMIT
                    and resumes < self._max_rate_limit_resumes
                ):
                    resumes += 1
                    delay = max(
                        self._executor.limiter.cooldown_remaining(),
                        self._rate_limit_resume_delay,
                    )
                    logger.warning(
                        "backfill_rate_limited",
                        symbol=symbol,
                        cursor=cursor,
                        resume=resumes,
                        delay=delay,
                    )
                    await self._sleep(delay)
                    continue
                raise BackfillInterrupted(symbol, candles, e) from e

            pages += 1
            if not rows:
                break

            page = [Candle.from_kline(row) for row in rows]
            full_page = len(page) >= self._page_size
            emitted = page[:-1] if full_page else page

            for candle in emitted:
                if candle.open_time < start_ms or candle.open_time > end_ms:
                    continue
                if last_open_time is not None and candle.open_time <= last_open_time:
                    continue
                candles.append(candle)
                last_open_time = candle.open_time

            if not full_page:
                break

            next_cursor = emitted[-1].close_time + 1
            if next_cursor <= cursor:
                logger.warning(
                    "backfill_cursor_stalled",
                    symbol=symbol,
                    cursor=cursor,
                    next_cursor=next_cursor,
                )
                break
            cursor = next_cursor

        logger.debug(
            "backfill_complete",
            symbol=symbol,
            interval=interval,
            pages=pages,
            candles=len(candles),
        )
        return candles

    async def _fetch_page(self, symbol: str, interval: str, cursor: int, end_ms: int) -> list:
        return await self._executor.execute(
            lambda: self._client.fetch_klines(
                symbol, interval, cursor, end_ms, self._page_size
            ),
            weight=KLINES_WEIGHT,
            operation=f"klines:{symbol}:{interval}",
        )
