"""Tests for the KlineCollector stage with a real store and queue."""

import pytest

from collector.config import CollectionSettings
from collector.data.backfiller import HistoricalBackfiller
from collector.data.kline_collector import KlineCollector, interval_to_ms
from collector.data.models import ListingBatch, SymbolBatch
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore
from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.exceptions import ExchangeRequestError
from collector.exchange.executor import RequestExecutor
from collector.models import ErrorType, ListingRecord, ListingStatus, TargetSymbol, WorkItem
from collector.workers.pool import WorkerPool
from conftest import MINUTE_MS, FakeClock, FakeKlineClient, minute_series

HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
NOW_MS = 1_700_006_400_000
LISTING_MS = NOW_MS - 10 * DAY_MS


def trading_info(*names: str) -> dict:
    return {"symbols": [{"symbol": name, "status": "TRADING"} for name in names]}


async def seed(store: HistoricalStore, listings: dict[str, int]) -> dict[str, int]:
    """Register symbols with analyzed listings; returns name -> id."""
    await store.write_batch(SymbolBatch([TargetSymbol.from_pair(n, "USDT") for n in listings]))
    ids: dict[str, int] = {}
    records = []
    for name, listing_ms in listings.items():
        symbol = await store.get_symbol(name)
        assert symbol is not None
        ids[name] = symbol.id
        records.append(ListingRecord(symbol.id, listing_ms, ListingStatus.ANALYZED))
    await store.write_batch(ListingBatch(records))
    return ids


def make_collector(
    client: FakeKlineClient,
    executor: RequestExecutor,
    store: HistoricalStore,
    queue: PersistenceQueue,
    clock: FakeClock,
) -> KlineCollector:
    settings = CollectionSettings()
    backfiller = HistoricalBackfiller(client, executor, settings, sleep=clock.sleep)  # type: ignore[arg-type]
    return KlineCollector(
        ExchangeInfoProvider(client, executor),  # type: ignore[arg-type]
        store,
        queue,
        backfiller,
        WorkerPool(2, name="klines"),
        settings,
        clock=lambda: NOW_MS / 1000,
    )


class TestCollect:
    @pytest.mark.asyncio
    async def test_backfills_48_hours_after_listing(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        ids = await seed(store, {"NEWUSDT": LISTING_MS})
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 3 * 24 * 60)}, exchange_info=trading_info("NEWUSDT")
        )
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.total == 1
        assert summary.analyzed == 1
        candles = await store.get_candles(ids["NEWUSDT"])
        assert len(candles) == 2880
        assert candles[0].open_time == LISTING_MS
        assert candles[-1].close_time == LISTING_MS + 48 * HOUR_MS - 1

    @pytest.mark.asyncio
    async def test_skips_symbols_no_longer_trading(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"NEWUSDT": LISTING_MS, "GONEUSDT": LISTING_MS})
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 10)}, exchange_info=trading_info("NEWUSDT")
        )
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.total == 1
        assert {call[0] for call in client.calls} == {"NEWUSDT"}

    @pytest.mark.asyncio
    async def test_trading_filter_failure_keeps_all(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"NEWUSDT": LISTING_MS, "OTHERUSDT": LISTING_MS})
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 10)},
            failures={"exchange_info": ExchangeRequestError("503", ErrorType.SERVER_ERROR)},
        )
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.total == 2
        assert summary.analyzed == 2

    @pytest.mark.asyncio
    async def test_old_listings_ignored(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"OLDUSDT": NOW_MS - 400 * DAY_MS})
        client = FakeKlineClient(exchange_info=trading_info("OLDUSDT"))
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.total == 0
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_interrupted_backfill_persists_partial_data(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        ids = await seed(store, {"NEWUSDT": LISTING_MS})
        client = FakeKlineClient(
            {"1m": minute_series(LISTING_MS, 3 * 24 * 60)},
            failures={1: ExchangeRequestError("503", ErrorType.SERVER_ERROR)},
            exchange_info=trading_info("NEWUSDT"),
        )
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.failed == 1
        assert summary.failures_by_reason == {"server_error": ["NEWUSDT"]}
        assert len(await store.get_candles(ids["NEWUSDT"])) == 999

    @pytest.mark.asyncio
    async def test_no_candles_is_no_data(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"NEWUSDT": LISTING_MS})
        client = FakeKlineClient({"1m": []}, exchange_info=trading_info("NEWUSDT"))
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)

        summary = await collector.collect()
        await queue.close()

        assert summary.no_data == 1
        assert summary.failed == 0


class TestCollectSymbol:
    @pytest.mark.asyncio
    async def test_window_capped_at_now(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        recent = NOW_MS - 10 * HOUR_MS
        ids = await seed(store, {"NEWUSDT": recent})
        client = FakeKlineClient({"1m": minute_series(recent, 3000)})
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)
        symbol = await store.get_symbol("NEWUSDT")
        assert symbol is not None

        result = await collector.collect_symbol(WorkItem(symbol=symbol, hint=recent))
        await queue.close()

        assert result.status == "collected"
        assert client.calls[0][3] == NOW_MS
        candles = await store.get_candles(ids["NEWUSDT"])
        assert candles[-1].open_time <= NOW_MS

    @pytest.mark.asyncio
    async def test_existing_candles_skipped(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"NEWUSDT": LISTING_MS})
        client = FakeKlineClient({"1m": minute_series(LISTING_MS, 5)})
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)
        symbol = await store.get_symbol("NEWUSDT")
        assert symbol is not None

        first = await collector.collect_symbol(WorkItem(symbol=symbol, hint=LISTING_MS))
        second = await collector.collect_symbol(WorkItem(symbol=symbol, hint=LISTING_MS))
        await queue.close()

        assert first.candles_saved == 5
        assert second.status == "existing"
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_rows_are_invalid_data(
        self, store: HistoricalStore, request_executor: RequestExecutor, fake_clock: FakeClock
    ) -> None:
        await seed(store, {"NEWUSDT": LISTING_MS})
        client = FakeKlineClient({"1m": [[LISTING_MS, "1", "1"]]})
        queue = PersistenceQueue(store.write_batch)
        collector = make_collector(client, request_executor, store, queue, fake_clock)
        symbol = await store.get_symbol("NEWUSDT")
        assert symbol is not None

        result = await collector.collect_symbol(WorkItem(symbol=symbol, hint=LISTING_MS))
        await queue.close()

        assert result.status == "invalid_data"


class TestIntervalToMs:
    def test_known_intervals(self) -> None:
        assert interval_to_ms("1m") == MINUTE_MS
        assert interval_to_ms("4h") == 4 * HOUR_MS
        assert interval_to_ms("1d") == DAY_MS

    def test_unknown_interval(self) -> None:
        with pytest.raises(ValueError):
            interval_to_ms("1x")
