"""Tests for HistoricalBackfiller pagination and failure handling.

The fake client serves a synthetic one-minute series and honours
startTime/endTime/limit the way the klines endpoint does.
"""

import pytest

from collector.config import CollectionSettings
from collector.data.backfiller import HistoricalBackfiller
from collector.exceptions import BackfillInterrupted, ExchangeRequestError
from collector.exchange.executor import RequestExecutor
from collector.models import ErrorType
from conftest import MINUTE_MS, FakeClock, FakeKlineClient, make_kline, minute_series

LISTING_MS = 1_700_000_040_000 - (1_700_000_040_000 % MINUTE_MS)
WINDOW_END_MS = LISTING_MS + 48 * 3_600_000 - 1


def make_backfiller(
    client: FakeKlineClient,
    executor: RequestExecutor,
    clock: FakeClock,
    **overrides,
) -> HistoricalBackfiller:
    settings = CollectionSettings(**overrides)
    return HistoricalBackfiller(client, executor, settings, sleep=clock.sleep)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestPagination:
    @pytest.mark.asyncio
    async def test_48_hour_window_yields_2880_unique_candles(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        # Series extends past the window so the last page is cut by endTime
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 4000)})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert len(candles) == 2880
        assert len(client.calls) >= 3
        open_times = [c.open_time for c in candles]
        assert len(set(open_times)) == len(open_times)
        assert open_times == sorted(open_times)

    @pytest.mark.asyncio
    async def test_candles_within_bounds(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        start = LISTING_MS + 17 * MINUTE_MS
        end = start + 2500 * MINUTE_MS - 1
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 4000)})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        candles = await backfiller.backfill("ABCUSDT", "1m", start, end)

        assert len(candles) == 2500
        assert all(c.open_time >= start for c in candles)
        assert all(c.close_time <= end + MINUTE_MS for c in candles)

    @pytest.mark.asyncio
    async def test_full_page_drops_last_and_rerequests_it(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 25)})
        backfiller = make_backfiller(client, request_executor, fake_clock, page_size=10)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, LISTING_MS + 100 * MINUTE_MS)

        assert len(candles) == 25
        starts = [call[2] for call in client.calls]
        # Each cursor is the open time of the candle held back from the previous page
        assert starts == [LISTING_MS, LISTING_MS + 9 * MINUTE_MS, LISTING_MS + 18 * MINUTE_MS]

    @pytest.mark.asyncio
    async def test_short_page_stops(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 10)})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert len(candles) == 10
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_window(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        client = FakeKlineClient({"1m": []})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        assert await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS) == []
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_duplicate_rows_from_server_are_dropped(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        rows = minute_series(LISTING_MS, 5)
        rows.insert(2, make_kline(LISTING_MS + MINUTE_MS))
        client = FakeKlineClient({"1m": rows})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert [c.open_time for c in candles] == [LISTING_MS + i * MINUTE_MS for i in range(5)]

    @pytest.mark.asyncio
    async def test_page_cap_terminates(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 100)})
        backfiller = make_backfiller(client, request_executor, fake_clock, page_size=10, max_pages=3)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert len(client.calls) == 3
        assert len(candles) == 27


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_rate_limit_resumes_from_same_cursor(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        rate_limited = ExchangeRequestError("429", ErrorType.RATE_LIMIT, retry_after=5.0)
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 4000)}, failures={1: rate_limited})
        backfiller = make_backfiller(client, request_executor, fake_clock)

        candles = await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert len(candles) == 2880
        assert client.calls[1][2] == client.calls[2][2]
        # Resume waits at least the configured delay even when the cooldown is shorter
        assert 10.0 in fake_clock.sleeps

    @pytest.mark.asyncio
    async def test_rate_limit_resumes_are_bounded(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        rate_limited = ExchangeRequestError("429", ErrorType.RATE_LIMIT)
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 4000)},
            failures={1: rate_limited, 2: rate_limited},
        )
        backfiller = make_backfiller(client, request_executor, fake_clock, max_rate_limit_resumes=1)

        with pytest.raises(BackfillInterrupted) as exc_info:
            await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        assert exc_info.value.error_type is ErrorType.RATE_LIMIT
        assert len(exc_info.value.candles) == 999

    @pytest.mark.asyncio
    async def test_terminal_failure_keeps_partial_candles(
        self, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 4000)},
            failures={1: ExchangeRequestError("503", ErrorType.SERVER_ERROR)},
        )
        backfiller = make_backfiller(client, request_executor, fake_clock)

        with pytest.raises(BackfillInterrupted) as exc_info:
            await backfiller.backfill("ABCUSDT", "1m", LISTING_MS, WINDOW_END_MS)

        interrupted = exc_info.value
        assert interrupted.symbol == "ABCUSDT"
        assert interrupted.error_type is ErrorType.SERVER_ERROR
        assert [c.open_time for c in interrupted.candles] == [
            LISTING_MS + i * MINUTE_MS for i in range(999)
        ]
