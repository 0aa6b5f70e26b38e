"""Collection pipeline -- runs the three collection stages in order.

  1. SYMBOLS: register the supplied targets, or discover them from exchangeInfo
  2. LISTINGS: resolve listing timestamps for symbols still needing analysis
  3. KLINES: backfill the first hours of every recent listing

The pipeline owns the lifecycle of the shared RateLimiter timers and the
PersistenceQueue drain task. ``stop()`` stops the worker pools from
admitting new items; whatever is already enqueued is still committed.
"""

import time
from collections.abc import Callable

from collector.config import CollectionSettings
from collector.data.kline_collector import DAY_MS, KlineCollector
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore
from collector.discovery.listing_analyzer import ListingAnalyzer
from collector.discovery.symbol_collector import SymbolCollector
from collector.exceptions import RequestFailedError
from collector.logging import get_logger
from collector.models import CollectionSummary, TargetSymbol
from collector.ratelimit.limiter import RateLimiter
from collector.workers.pool import WorkerPool

logger = get_logger(__name__)


class CollectionPipeline:
    """Sequences symbol discovery, listing analysis and kline collection.

    Args:
        settings: Collection parameters (recent listing window).
        limiter: Shared rate limiter; its timers run for the pipeline's lifetime.
        queue: Shared persistence queue; drained and closed when the run ends.
        store: Read access for the final statistics.
        symbol_collector: Stage 1.
        listing_analyzer: Stage 2.
        kline_collector: Stage 3.
        pools: Worker pools to stop on shutdown.
        clock: Wall-clock time source in seconds.
    """

    def __init__(
        self,
        settings: CollectionSettings,
        limiter: RateLimiter,
        queue: PersistenceQueue,
        store: HistoricalStore,
        symbol_collector: SymbolCollector,
        listing_analyzer: ListingAnalyzer,
        kline_collector: KlineCollector,
        pools: list[WorkerPool],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._limiter = limiter
        self._queue = queue
        self._store = store
        self._symbol_collector = symbol_collector
        self._listing_analyzer = listing_analyzer
        self._kline_collector = kline_collector
        self._pools = pools
        self._clock = clock
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    async def run(
        self,
        targets: list[TargetSymbol] | None = None,
        hints: dict[str, int] | None = None,
    ) -> list[CollectionSummary]:
        """Run all stages and return one summary per stage that ran."""
        summaries: list[CollectionSummary] = []
        # A supplied target list scopes every stage to those symbols
        names = [t.symbol for t in targets] if targets is not None else None
        await self._limiter.start()
        self._queue.start()
        logger.info("collection_pipeline_started", targets=len(targets) if targets else None)
        try:
            summaries.append(await self._collect_symbols(targets))

            if not self._stopping:
                summaries.append(await self._listing_analyzer.analyze(hints, names))

            if not self._stopping:
                summaries.append(await self._kline_collector.collect(names=names))
        finally:
            await self._queue.close()
            await self._limiter.stop()

        for summary in summaries:
            logger.info(
                "stage_summary",
                stage=summary.stage,
                total=summary.total,
                analyzed=summary.analyzed,
                no_data=summary.no_data,
                skipped=summary.skipped,
                failed=summary.failed,
                failures_by_reason={k: len(v) for k, v in summary.failures_by_reason.items()},
            )
        logger.info("collection_pipeline_finished", stopped_early=self._stopping)
        return summaries

    async def stop(self) -> None:
        """Signal a graceful stop: no new work items are admitted."""
        logger.info("collection_pipeline_stopping")
        self._stopping = True
        for pool in self._pools:
            pool.stop()

    async def collection_stats(self) -> dict:
        """Store totals for the final report."""
        recent_since_ms = int(self._clock() * 1000) - self._settings.recent_listing_days * DAY_MS
        return await self._store.get_collection_stats(recent_since_ms)

    async def _collect_symbols(self, targets: list[TargetSymbol] | None) -> CollectionSummary:
        summary = CollectionSummary(stage="symbols")
        try:
            if targets is not None:
                count = await self._symbol_collector.register(targets)
            else:
                count = await self._symbol_collector.collect()
        except RequestFailedError as e:
            # Previously registered symbols can still be analyzed
            logger.error("symbol_discovery_failed", error_type=e.error_type.value, error=str(e))
            summary.record_failure("*", e.error_type.value)
            return summary
        summary.total = count
        summary.analyzed = count
        return summary
