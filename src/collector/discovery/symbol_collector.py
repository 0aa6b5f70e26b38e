"""Discovery and registration of the tradable pairs to monitor."""

from collector.config import CollectionSettings
from collector.data.models import SymbolBatch
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore
from collector.discovery.exchange_info import ExchangeInfoProvider
from collector.logging import get_logger
from collector.models import Symbol, TargetSymbol

logger = get_logger(__name__)


class SymbolCollector:
    """Keeps the symbols table in sync with the exchange's spot pairs.

    A pair qualifies when its status is TRADING, its quote asset is one of
    ``quote_assets`` and spot trading is allowed.
    """

    def __init__(
        self,
        exchange_info: ExchangeInfoProvider,
        store: HistoricalStore,
        queue: PersistenceQueue,
        settings: CollectionSettings,
    ) -> None:
        self._exchange_info = exchange_info
        self._store = store
        self._queue = queue
        self._quote_assets = [q.upper() for q in settings.quote_assets]
        self._max_listing_retries = settings.max_listing_retries

    async def collect(self) -> int:
        """Fetch exchangeInfo and upsert every qualifying pair. Returns the count."""
        symbols = await self._exchange_info.get_symbols()
        targets = [
            TargetSymbol(
                symbol=entry["symbol"],
                base_asset=entry.get("baseAsset", ""),
                quote_asset=entry.get("quoteAsset", ""),
            )
            for entry in symbols.values()
            if entry.get("status") == "TRADING"
            and entry.get("quoteAsset") in self._quote_assets
            and entry.get("isSpotTradingAllowed") is True
        ]
        logger.info(
            "tradable_symbols_found",
            count=len(targets),
            quote_assets=self._quote_assets,
        )
        return await self.register(targets)

    async def register(self, targets: list[TargetSymbol]) -> int:
        """Upsert an externally supplied target list."""
        if not targets:
            return 0
        written = await self._queue.enqueue(SymbolBatch(list(targets)))
        logger.info("symbols_registered", count=written)
        return written

    async def target_symbols(self, names: list[str] | None = None) -> list[Symbol]:
        """Symbols still needing listing analysis.

        With ``names``, only those symbols are considered, whatever their
        quote asset.
        """
        return await self._store.get_symbols_for_analysis(
            self._quote_assets, self._max_listing_retries, names
        )
