"""Cached view of Binance exchangeInfo shared by all discovery components.

exchangeInfo costs 20 weight per call, so it is fetched once per run and
served from memory afterwards. Concurrent first callers share one request.
"""

import asyncio

from collector.exchange.binance_client import BinanceClient
from collector.exchange.executor import RequestExecutor
from collector.exchange.types import EXCHANGE_INFO_WEIGHT
from collector.logging import get_logger

logger = get_logger(__name__)


class ExchangeInfoProvider:
    """Lazily fetches and caches per-symbol metadata keyed by symbol name.

    A failed fetch is not cached; the next caller tries again.
    """

    def __init__(self, client: BinanceClient, executor: RequestExecutor) -> None:
        self._client = client
        self._executor = executor
        self._symbols: dict[str, dict] | None = None
        self._lock = asyncio.Lock()

    async def get_symbols(self, refresh: bool = False) -> dict[str, dict]:
        async with self._lock:
            if self._symbols is None or refresh:
                data = await self._executor.execute(
                    self._client.fetch_exchange_info,
                    weight=EXCHANGE_INFO_WEIGHT,
                    operation="exchange_info",
                )
                entries = (data or {}).get("symbols") or []
                self._symbols = {entry["symbol"]: entry for entry in entries if "symbol" in entry}
                logger.info("exchange_info_loaded", symbols=len(self._symbols))
            return self._symbols

    async def symbol_info(self, name: str) -> dict | None:
        symbols = await self.get_symbols()
        return symbols.get(name)

    async def trading_symbols(self) -> set[str]:
        """Names of symbols whose status is currently TRADING."""
        symbols = await self.get_symbols()
        return {name for name, entry in symbols.items() if entry.get("status") == "TRADING"}
