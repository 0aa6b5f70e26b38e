"""Adaptive rate limiter shared by every API consumer in the process.

All workers go through one RateLimiter instance. ``acquire`` is serialized
by an asyncio.Lock, so the budget is only ever mutated by one coroutine at
a time and waiting callers are admitted in arrival order.

Binance reports the IP's used weight for the current minute in the
``X-MBX-USED-WEIGHT-1M`` response header. That value replaces the local
estimate and drives the adaptive backoff multiplier.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

from collector.config import RateLimitSettings
from collector.logging import get_logger
from collector.ratelimit.budget import MINUTE_WINDOW, SECOND_WINDOW, RateBudget

logger = get_logger(__name__)

USED_WEIGHT_HEADER = "x-mbx-used-weight-1m"


class RateLimiter:
    """Blocks callers until the shared budget admits their request.

    Args:
        settings: Quota ceilings and adaptive backoff tuning.
        clock: Monotonic time source in seconds.
        sleep: Coroutine used for every wait, injectable for tests.
    """

    def __init__(
        self,
        settings: RateLimitSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._sleep = sleep
        self._budget = RateBudget(
            max_requests_per_second=settings.max_requests_per_second,
            max_requests_per_minute=settings.max_requests_per_minute,
            max_weight=settings.max_weight,
            max_backoff=settings.max_backoff,
        )
        now = clock()
        self._budget.second_window_start = now
        self._budget.minute_window_start = now
        self._lock = asyncio.Lock()
        self._timer_tasks: list[asyncio.Task] = []  # type: ignore[type-arg]

        self._total_requests = 0
        self._rate_limit_hits = 0
        self._total_wait = 0.0
        self._max_wait = 0.0

    @property
    def budget(self) -> RateBudget:
        return self._budget

    # ──────────────────────────────────────────────
    # Background window timers
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start the wall-clock timers that reset the second/minute windows."""
        if self._timer_tasks:
            logger.warning("rate_limiter_already_started")
            return
        self._timer_tasks = [
            asyncio.create_task(self._reset_loop(SECOND_WINDOW, self._budget.reset_second)),
            asyncio.create_task(self._reset_loop(MINUTE_WINDOW, self._budget.reset_minute)),
        ]
        logger.info(
            "rate_limiter_started",
            max_requests_per_second=self._settings.max_requests_per_second,
            max_requests_per_minute=self._settings.max_requests_per_minute,
            max_weight=self._settings.max_weight,
            adaptive=self._settings.adaptive,
        )

    async def stop(self) -> None:
        for task in self._timer_tasks:
            task.cancel()
        for task in self._timer_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer_tasks = []
        logger.info("rate_limiter_stopped", **self.snapshot())

    async def _reset_loop(self, period: float, reset: Callable[[float], None]) -> None:
        while True:
            await asyncio.sleep(period)
            reset(self._clock())

    # ──────────────────────────────────────────────
    # Admission
    # ──────────────────────────────────────────────

    async def acquire(self, weight: int = 1) -> float:
        """Suspend until a request of ``weight`` fits the budget, then charge it.

        Returns the number of seconds the caller waited.
        """
        requested_at = self._clock()
        async with self._lock:
            while True:
                now = self._clock()
                self._budget.roll_windows(now)
                delay = self._budget.wait_time(weight, now)
                if delay <= 0:
                    break
                logger.debug(
                    "rate_limit_wait",
                    delay=round(delay, 3),
                    weight_used=self._budget.weight_used,
                    requests_this_second=self._budget.requests_this_second,
                    backoff=round(self._budget.backoff_multiplier, 2),
                )
                await self._sleep(delay)
            self._budget.record_request(weight, now)

        waited = now - requested_at
        self._total_requests += 1
        self._total_wait += waited
        self._max_wait = max(self._max_wait, waited)
        return waited

    # ──────────────────────────────────────────────
    # Feedback from responses
    # ──────────────────────────────────────────────

    def report_response(self, headers: Mapping[str, str] | None) -> None:
        """Adopt the exchange's used-weight counter and adapt the backoff."""
        if not headers:
            return
        raw = None
        for key, value in headers.items():
            if key.lower() == USED_WEIGHT_HEADER:
                raw = value
                break
        if raw is None:
            return
        try:
            used_weight = int(raw)
        except (TypeError, ValueError):
            logger.warning("invalid_used_weight_header", raw=raw)
            return

        self._budget.adopt_used_weight(used_weight)
        if not self._settings.adaptive:
            return

        utilization = self._budget.utilization
        if utilization > self._settings.high_usage_ratio:
            self._budget.increase_backoff(self._settings.backoff_increase)
            logger.debug(
                "high_weight_usage",
                utilization=round(utilization, 3),
                backoff=round(self._budget.backoff_multiplier, 2),
            )
        elif (
            utilization < self._settings.low_usage_ratio
            and self._budget.backoff_multiplier > 1.0
        ):
            self._budget.decay_backoff(self._settings.backoff_decay)
            logger.debug(
                "low_weight_usage",
                utilization=round(utilization, 3),
                backoff=round(self._budget.backoff_multiplier, 2),
            )

    def report_rate_limit(self, retry_after: float | None = None) -> float:
        """Record a rate-limit rejection and start the shared cooldown.

        Doubles the backoff multiplier (capped) and blocks every subsequent
        ``acquire`` for ``retry_after`` seconds, or the configured minimum
        cooldown when the exchange gave no hint. Returns the cooldown length.
        """
        self._rate_limit_hits += 1
        self._budget.increase_backoff(2.0)
        cooldown = retry_after if retry_after is not None else self._settings.min_cooldown_seconds
        self._budget.start_cooldown(cooldown, self._clock())
        logger.warning(
            "rate_limit_cooldown",
            cooldown_seconds=cooldown,
            backoff=round(self._budget.backoff_multiplier, 2),
            total_rate_limit_hits=self._rate_limit_hits,
        )
        return cooldown

    def cooldown_remaining(self) -> float:
        return max(0.0, self._budget.cooldown_until - self._clock())

    def snapshot(self) -> dict:
        """Statistics for logging and the final summary."""
        average_wait = self._total_wait / self._total_requests if self._total_requests else 0.0
        return {
            "total_requests": self._total_requests,
            "rate_limit_hits": self._rate_limit_hits,
            "average_wait_seconds": round(average_wait, 3),
            "max_wait_seconds": round(self._max_wait, 3),
            "weight_used": self._budget.weight_used,
            "requests_this_minute": self._budget.requests_this_minute,
            "requests_this_second": self._budget.requests_this_second,
            "backoff_multiplier": round(self._budget.backoff_multiplier, 2),
        }
