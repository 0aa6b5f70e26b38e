"""Exchange access layer -- Binance REST via ccxt, retries and classification."""

from collector.exchange.binance_client import BinanceClient
from collector.exchange.errors import classify_error, parse_retry_after
from collector.exchange.executor import RequestExecutor
from collector.exchange.retry import RetryPolicy
from collector.exchange.types import ApiResponse

__all__ = [
    "ApiResponse",
    "BinanceClient",
    "RequestExecutor",
    "RetryPolicy",
    "classify_error",
    "parse_retry_after",
]
