"""Entry point for the new-listing candle collector.

Wires all components together and runs the collection pipeline once.
Handles SIGINT/SIGTERM for graceful shutdown: worker pools stop admitting
symbols, in-flight requests complete and queued writes are committed.

Component wiring order (in _build_components):
1. BinanceClient (ccxt public REST)
2. RateLimiter (shared quota)
3. RequestExecutor (retry policy)
4. ExchangeInfoProvider (cached exchangeInfo)
5. HistoricalStore + PersistenceQueue (single-writer persistence)
6. WorkerPools (listing analysis, kline collection)
7. SymbolCollector, ListingDateResolver, ListingAnalyzer
8. HistoricalBackfiller, KlineCollector
9. CollectionPipeline
"""

import asyncio
import json
import signal
from typing import Any

from collector.config import AppSettings
from collector.data.backfiller import HistoricalBackfiller
from collector.data.database import CollectorDatabase
from collector.data.kline_collector import KlineCollector
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore
from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.discovery.listing_analyzer import ListingAnalyzer
from collector.discovery.listing_resolver import ListingDateResolver
from collector.discovery.symbol_collector import SymbolCollector
from collector.exchange.binance_client import BinanceClient
from collector.exchange.executor import RequestExecutor
from collector.exchange.retry import RetryPolicy
from collector.logging import get_logger, setup_logging
from collector.models import TargetSymbol
from collector.pipeline import CollectionPipeline
from collector.ratelimit.limiter import RateLimiter
from collector.workers.pool import WorkerPool


def _build_components(settings: AppSettings, database: CollectorDatabase) -> dict[str, Any]:
    """Build all collector components from settings.

    Args:
        settings: Application-wide settings.
        database: Connected database shared by the store.

    Returns:
        Dict mapping component names to instances.
    """
    client = BinanceClient(settings.exchange)
    limiter = RateLimiter(settings.rate_limit)
    executor = RequestExecutor(limiter, RetryPolicy.from_settings(settings.retry))
    exchange_info = ExchangeInfoProvider(client, executor)

    store = HistoricalStore(database, settings.storage.insert_chunk_size)
    queue = PersistenceQueue(store.write_batch)

    listing_pool = WorkerPool(settings.collection.worker_count, name="listing_analysis")
    kline_pool = WorkerPool(settings.collection.kline_worker_count, name="kline_collection")

    symbol_collector = SymbolCollector(exchange_info, store, queue, settings.collection)
    resolver = ListingDateResolver(client, executor, exchange_info, settings.collection)
    listing_analyzer = ListingAnalyzer(resolver, symbol_collector, queue, listing_pool)

    backfiller = HistoricalBackfiller(client, executor, settings.collection)
    kline_collector = KlineCollector(
        exchange_info, store, queue, backfiller, kline_pool, settings.collection
    )

    pipeline = CollectionPipeline(
        settings=settings.collection,
        limiter=limiter,
        queue=queue,
        store=store,
        symbol_collector=symbol_collector,
        listing_analyzer=listing_analyzer,
        kline_collector=kline_collector,
        pools=[listing_pool, kline_pool],
    )

    return {
        "client": client,
        "limiter": limiter,
        "executor": executor,
        "store": store,
        "queue": queue,
        "pipeline": pipeline,
    }


def load_targets(path: str) -> tuple[list[TargetSymbol], dict[str, int]]:
    """Read a target list and listing hints from a JSON file.

    Each entry is ``{"symbol": "ABCUSDT", "quote_asset": "USDT",
    "listing_hint": 1700000000000}``; ``listing_hint`` is optional.
    """
    with open(path, encoding="utf-8") as f:
        entries = json.load(f)

    targets: list[TargetSymbol] = []
    hints: dict[str, int] = {}
    for entry in entries:
        target = TargetSymbol.from_pair(entry["symbol"], entry["quote_asset"])
        targets.append(target)
        if entry.get("listing_hint") is not None:
            hints[target.symbol] = int(entry["listing_hint"])
    return targets, hints


def _setup_signal_handlers(pipeline: CollectionPipeline) -> None:
    """Register SIGINT/SIGTERM for graceful stop.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("collector.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(pipeline.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def run() -> None:
    """Run one collection pass: symbols, listing analysis, klines."""
    settings = AppSettings()
    setup_logging(settings.log_level)
    logger = get_logger("collector.main")

    targets: list[TargetSymbol] | None = None
    hints: dict[str, int] = {}
    if settings.collection.targets_file:
        targets, hints = load_targets(settings.collection.targets_file)
        logger.info("targets_loaded", targets=len(targets), hints=len(hints))

    async with CollectorDatabase(settings.storage.db_path) as database:
        components = _build_components(settings, database)
        pipeline: CollectionPipeline = components["pipeline"]
        _setup_signal_handlers(pipeline)

        logger.info(
            "collector_starting",
            db_path=settings.storage.db_path,
            workers=settings.collection.worker_count,
            kline_workers=settings.collection.kline_worker_count,
            quote_assets=settings.collection.quote_assets,
        )

        try:
            await pipeline.run(targets, hints)
            stats = await pipeline.collection_stats()
            logger.info(
                "collection_report",
                **stats,
                **components["limiter"].snapshot(),
            )
        finally:
            await components["client"].close()
            logger.info("collector_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
