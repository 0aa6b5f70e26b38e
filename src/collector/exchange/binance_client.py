"""Binance spot REST client via ccxt async.

Only public market-data endpoints are used, through ccxt's implicit API so
kline rows come back in Binance's raw array layout. ccxt's own throttling
is disabled: pacing belongs to the shared RateLimiter, which needs the
response headers this client passes along.
"""

from collections.abc import Awaitable, Callable

import ccxt.async_support as ccxt_async

from collector.config import ExchangeSettings
from collector.exceptions import ExchangeRequestError
from collector.exchange.errors import classify_error, parse_retry_after
from collector.exchange.types import MAX_KLINES_PER_REQUEST, ApiResponse
from collector.logging import get_logger
from collector.models import ErrorType

logger = get_logger(__name__)


class BinanceClient:
    """Thin async wrapper around ccxt.async_support.binance."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._exchange = ccxt_async.binance(
            {
                "enableRateLimit": False,
                "timeout": settings.request_timeout_ms,
                "options": {"defaultType": "spot"},
            }
        )
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)

    @property
    def exchange(self) -> ccxt_async.binance:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def close(self) -> None:
        """Release the aiohttp session held by ccxt. Must be awaited on shutdown."""
        await self._exchange.close()
        logger.info("binance_connection_closed")

    async def fetch_exchange_info(self) -> ApiResponse:
        """GET /api/v3/exchangeInfo: trading rules and symbol metadata."""
        return await self._call(self._exchange.public_get_exchangeinfo, {})

    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
        limit: int = MAX_KLINES_PER_REQUEST,
    ) -> ApiResponse:
        """GET /api/v3/klines.

        Returns rows ``[openTime, open, high, low, close, volume, closeTime,
        quoteVolume, tradeCount, takerBuyBase, takerBuyQuote, ignore]`` in
        ascending openTime. The exchange caps ``limit`` at 1000.
        """
        params: dict = {
            "symbol": symbol,
            "interval": interval,
            "limit": min(limit, MAX_KLINES_PER_REQUEST),
        }
        if start_ms is not None:
            params["startTime"] = start_ms
        if end_ms is not None:
            params["endTime"] = end_ms

        logger.debug("fetching_klines", **params)
        return await self._call(self._exchange.public_get_klines, params)

    async def _call(self, endpoint: Callable[[dict], Awaitable], params: dict) -> ApiResponse:
        try:
            data = await endpoint(params)
        except ccxt_async.BaseError as e:
            error_type = classify_error(e)
            retry_after = None
            if error_type is ErrorType.RATE_LIMIT:
                retry_after = parse_retry_after(self._last_headers())
            raise ExchangeRequestError(str(e), error_type, retry_after) from e
        return ApiResponse(data=data, headers=self._last_headers())

    def _last_headers(self) -> dict[str, str]:
        # Shared by concurrent calls; the used-weight counter is IP-wide so a
        # slightly newer value from another request is still accurate.
        headers = getattr(self._exchange, "last_response_headers", None) or {}
        return {str(k): str(v) for k, v in headers.items()}
