"""Exchange response container and request weights."""

from dataclasses import dataclass, field
from typing import Any

# Binance spot REST request weights
EXCHANGE_INFO_WEIGHT = 20
KLINES_WEIGHT = 2

MAX_KLINES_PER_REQUEST = 1000


@dataclass
class ApiResponse:
    """Decoded response body plus the headers the rate limiter needs."""

    data: Any
    headers: dict[str, str] = field(default_factory=dict)
