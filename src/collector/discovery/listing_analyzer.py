"""Listing analysis stage: resolve and persist listing timestamps.

Runs the ListingDateResolver over every symbol still needing analysis
through a WorkerPool and writes one listing_analysis row per symbol via the
PersistenceQueue. Items that fail inside the worker are still recorded as
``error`` rows so they are retried on a later run, up to the retry limit.
"""

from collector.data.models import ListingBatch
from collector.data.persistence_queue import PersistenceQueue
from collector.discovery.listing_resolver import ListingDateResolver
from collector.discovery.symbol_collector import SymbolCollector
from collector.logging import get_logger
from collector.models import (
    CollectionSummary,
    ListingRecord,
    ListingResolution,
    ListingStatus,
    WorkFailure,
    WorkItem,
)
from collector.workers.pool import WorkerPool

logger = get_logger(__name__)

SHUTDOWN_REASON = "shutdown"


class ListingAnalyzer:
    """Drives listing-date resolution for pending symbols."""

    def __init__(
        self,
        resolver: ListingDateResolver,
        symbols: SymbolCollector,
        queue: PersistenceQueue,
        pool: WorkerPool,
    ) -> None:
        self._resolver = resolver
        self._symbols = symbols
        self._queue = queue
        self._pool = pool

    async def analyze(
        self,
        hints: dict[str, int] | None = None,
        names: list[str] | None = None,
    ) -> CollectionSummary:
        """Analyze pending symbols, or only ``names`` when given. ``hints``
        maps symbol name to a listing timestamp estimate in milliseconds."""
        hints = hints or {}
        pending = await self._symbols.target_symbols(names)
        summary = CollectionSummary(stage="listing_analysis", total=len(pending))
        logger.info("listing_analysis_started", symbols=len(pending), hints=len(hints))
        if not pending:
            return summary

        items = [WorkItem(symbol=s, hint=hints.get(s.name)) for s in pending]
        results = await self._pool.run(items, self.analyze_item)

        for item, result in zip(items, results):
            if isinstance(result, WorkFailure):
                if result.reason == SHUTDOWN_REASON:
                    summary.record_failure(result.symbol, SHUTDOWN_REASON)
                    continue
                summary.record_failure(result.symbol, result.error_type.value)
                await self._record_failure(item, result)
            elif result.status is ListingStatus.ANALYZED:
                summary.analyzed += 1
            elif result.status is ListingStatus.NO_DATA:
                summary.no_data += 1
            else:
                reason = result.error_type.value if result.error_type else "error"
                summary.record_failure(result.symbol, reason)

        logger.info(
            "listing_analysis_finished",
            total=summary.total,
            analyzed=summary.analyzed,
            no_data=summary.no_data,
            failed=summary.failed,
        )
        return summary

    async def analyze_item(self, item: WorkItem) -> ListingResolution:
        """Resolve one symbol and persist the outcome."""
        resolution = await self._resolver.resolve(item)
        record = ListingRecord(
            symbol_id=item.symbol.id,
            listing_timestamp=resolution.listing_timestamp,
            status=resolution.status,
            error_message=resolution.error_message,
        )
        await self._queue.enqueue(ListingBatch([record]))
        return resolution

    async def _record_failure(self, item: WorkItem, failure: WorkFailure) -> None:
        record = ListingRecord(
            symbol_id=item.symbol.id,
            listing_timestamp=None,
            status=ListingStatus.ERROR,
            error_message=failure.reason,
        )
        try:
            await self._queue.enqueue(ListingBatch([record]))
        except Exception as e:
            logger.error(
                "listing_failure_not_recorded",
                symbol=item.symbol.name,
                error=str(e),
            )
