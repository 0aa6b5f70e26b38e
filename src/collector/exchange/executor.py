"""RequestExecutor: one logical API operation with pacing and retries.

Each attempt first acquires quota from the shared RateLimiter. Failures are
classified by ``classify_error``; retryable ones wait according to the
RetryPolicy, anything else (or the last attempt) raises
RequestFailedError for the calling work item to record.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from collector.exceptions import RequestFailedError
from collector.exchange.errors import classify_error
from collector.exchange.retry import RetryPolicy
from collector.exchange.types import ApiResponse
from collector.logging import get_logger
from collector.models import ErrorType
from collector.ratelimit.limiter import RateLimiter

logger = get_logger(__name__)


class RequestExecutor:
    """Runs request functions through the rate limiter with retry/backoff.

    Usage:
        executor = RequestExecutor(limiter, RetryPolicy())
        rows = await executor.execute(
            lambda: client.fetch_klines("BTCUSDT", "1m", start, end),
            weight=KLINES_WEIGHT,
        )
    """

    def __init__(
        self,
        limiter: RateLimiter,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._limiter = limiter
        self._policy = policy
        self._sleep = sleep

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        request_fn: Callable[[], Awaitable[Any]],
        *,
        weight: int = 1,
        max_attempts: int | None = None,
        operation: str = "request",
    ) -> Any:
        """Call ``request_fn`` until it succeeds or fails terminally.

        An ApiResponse result feeds its headers to the limiter and its
        ``data`` is returned; any other result is returned unchanged.
        """
        attempts = max_attempts if max_attempts is not None else self._policy.max_attempts

        for attempt in range(1, attempts + 1):
            await self._limiter.acquire(weight)
            try:
                response = await request_fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_type = classify_error(e)
                if error_type is ErrorType.RATE_LIMIT:
                    self._limiter.report_rate_limit(getattr(e, "retry_after", None))

                if not self._policy.should_retry(error_type, attempt, attempts):
                    logger.error(
                        "request_failed",
                        operation=operation,
                        error_type=error_type.value,
                        attempt=attempt,
                        max_attempts=attempts,
                        error=str(e),
                    )
                    raise RequestFailedError(
                        f"{operation} failed after {attempt} attempt(s): {e}",
                        error_type,
                        attempt,
                    ) from e

                delay = self._policy.delay_for(attempt, error_type)
                logger.warning(
                    "request_retry",
                    operation=operation,
                    error_type=error_type.value,
                    attempt=attempt,
                    max_attempts=attempts,
                    delay=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                continue

            if isinstance(response, ApiResponse):
                self._limiter.report_response(response.headers)
                return response.data
            return response

        # Only reachable when attempts < 1
        raise RequestFailedError(f"{operation} was not attempted", ErrorType.BAD_REQUEST, 0)
