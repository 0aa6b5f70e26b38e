"""Shared test fixtures for the listing collector."""

import asyncio
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from collector.config import CollectionSettings, RateLimitSettings, RetrySettings
from collector.data.database import CollectorDatabase
from collector.data.store import HistoricalStore
from collector.exchange.executor import RequestExecutor
from collector.exchange.retry import RetryPolicy
from collector.exchange.types import ApiResponse
from collector.ratelimit.limiter import RateLimiter

MINUTE_MS = 60_000


class FakeClock:
    """Deterministic time source; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        # Yield so other tasks interleave like a real sleep would
        await asyncio.sleep(0)


def make_kline(
    open_time: int,
    volume: str = "10",
    open_price: str = "1.5",
    interval_ms: int = MINUTE_MS,
) -> list:
    """Binance kline row in the raw array layout."""
    return [
        open_time,
        open_price,
        "1.6",
        "1.4",
        "1.55",
        volume,
        open_time + interval_ms - 1,
        "15.5",
        12,
        "5",
        "7.75",
        "0",
    ]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings(
        max_requests_per_second=5,
        max_requests_per_minute=100,
        max_weight=100,
    )


@pytest.fixture
def retry_settings() -> RetrySettings:
    return RetrySettings()


@pytest.fixture
def collection_settings() -> CollectionSettings:
    return CollectionSettings(worker_count=3, kline_worker_count=2)


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncIterator[CollectorDatabase]:  # type: ignore[no-untyped-def]
    """Connected SQLite database in a temporary directory."""
    db = CollectorDatabase(str(tmp_path / "collector.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database: CollectorDatabase) -> HistoricalStore:
    return HistoricalStore(database, insert_chunk_size=100)


def minute_series(start_ms: int, count: int, interval_ms: int = MINUTE_MS, **kwargs) -> list[list]:
    return [make_kline(start_ms + i * interval_ms, interval_ms=interval_ms, **kwargs) for i in range(count)]


class FakeKlineClient:
    """Stands in for BinanceClient, serving klines from in-memory series.

    ``series`` maps interval to rows. ``failures`` maps either a call index
    or an interval to the exception to raise for that call.
    """

    def __init__(
        self,
        series: dict[str, list[list]] | None = None,
        failures: dict | None = None,
        exchange_info: dict | None = None,
    ) -> None:
        self.series = series or {}
        self.failures = failures or {}
        self.exchange_info = exchange_info if exchange_info is not None else {"symbols": []}
        self.calls: list[tuple] = []
        self.exchange_info_calls = 0

    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
        limit: int = 1000,
    ) -> ApiResponse:
        index = len(self.calls)
        self.calls.append((symbol, interval, start_ms, end_ms, limit))
        failure = self.failures.get(index) or self.failures.get(interval)
        if failure is not None:
            raise failure
        rows = [
            row
            for row in self.series.get(interval, [])
            if (start_ms is None or row[0] >= start_ms) and (end_ms is None or row[0] <= end_ms)
        ]
        return ApiResponse(data=rows[:limit])

    async def fetch_exchange_info(self) -> ApiResponse:
        self.exchange_info_calls += 1
        failure = self.failures.get("exchange_info")
        if failure is not None:
            raise failure
        return ApiResponse(data=self.exchange_info)


@pytest.fixture
def request_executor(fake_clock: FakeClock) -> RequestExecutor:
    """Executor with generous quotas and a single attempt per request."""
    limiter = RateLimiter(
        RateLimitSettings(
            max_requests_per_second=1000,
            max_requests_per_minute=100_000,
            max_weight=1_000_000,
        ),
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
    return RequestExecutor(limiter, RetryPolicy(max_attempts=1), sleep=fake_clock.sleep)
