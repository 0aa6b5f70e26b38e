"""Pure quota bookkeeping for the shared exchange budget.

RateBudget holds counters only. It never sleeps and never reads a clock:
every method takes ``now`` (monotonic seconds) from its single owner, the
RateLimiter.

Windows are fixed, not sliding. A window resets either from the limiter's
background timer or lazily once its period has elapsed. Near a boundary a
burst of up to twice the nominal per-window limit is therefore possible.
This mirrors how the counters have always been kept and is a known
approximation of the exchange's own enforcement.
"""

from dataclasses import dataclass

SECOND_WINDOW = 1.0
MINUTE_WINDOW = 60.0


@dataclass
class RateBudget:
    """Weight and request counters plus the adaptive backoff multiplier."""

    max_requests_per_second: int
    max_requests_per_minute: int
    max_weight: int
    max_backoff: float = 5.0
    weight_used: int = 0
    requests_this_second: int = 0
    requests_this_minute: int = 0
    backoff_multiplier: float = 1.0
    last_request_at: float | None = None
    cooldown_until: float = 0.0
    second_window_start: float = 0.0
    minute_window_start: float = 0.0

    @property
    def base_interval(self) -> float:
        """Minimum spacing between requests before backoff is applied."""
        return 1.0 / self.max_requests_per_second

    @property
    def utilization(self) -> float:
        return self.weight_used / self.max_weight

    # ──────────────────────────────────────────────
    # Window maintenance
    # ──────────────────────────────────────────────

    def reset_second(self, now: float) -> None:
        self.requests_this_second = 0
        self.second_window_start = now

    def reset_minute(self, now: float) -> None:
        self.requests_this_minute = 0
        self.weight_used = 0
        self.minute_window_start = now

    def roll_windows(self, now: float) -> None:
        """Reset any window whose period has fully elapsed."""
        if now - self.second_window_start >= SECOND_WINDOW:
            self.reset_second(now)
        if now - self.minute_window_start >= MINUTE_WINDOW:
            self.reset_minute(now)

    # ──────────────────────────────────────────────
    # Admission
    # ──────────────────────────────────────────────

    def wait_time(self, weight: int, now: float) -> float:
        """Seconds to wait before a request of ``weight`` may be sent.

        Returns 0.0 when every ceiling admits the request. Callers should
        roll windows first.
        """
        waits: list[float] = []

        if self.cooldown_until > now:
            waits.append(self.cooldown_until - now)

        minute_remaining = self.minute_window_start + MINUTE_WINDOW - now
        # A single request heavier than the whole ceiling is admitted on an
        # empty window, otherwise it could never run.
        if self.weight_used > 0 and self.weight_used + weight > self.max_weight:
            waits.append(minute_remaining)
        if self.requests_this_minute >= self.max_requests_per_minute:
            waits.append(minute_remaining)

        if self.requests_this_second >= self.max_requests_per_second:
            waits.append(self.second_window_start + SECOND_WINDOW - now)

        if self.last_request_at is not None:
            required = self.base_interval * self.backoff_multiplier
            elapsed = now - self.last_request_at
            if elapsed < required:
                waits.append(required - elapsed)

        return max(waits, default=0.0)

    def record_request(self, weight: int, now: float) -> None:
        self.weight_used += weight
        self.requests_this_second += 1
        self.requests_this_minute += 1
        self.last_request_at = now

    # ──────────────────────────────────────────────
    # Feedback
    # ──────────────────────────────────────────────

    def adopt_used_weight(self, used_weight: int) -> None:
        """Replace the local estimate with the exchange's authoritative count."""
        self.weight_used = used_weight

    def increase_backoff(self, factor: float) -> None:
        self.backoff_multiplier = min(self.max_backoff, self.backoff_multiplier * factor)

    def decay_backoff(self, factor: float) -> None:
        self.backoff_multiplier = max(1.0, self.backoff_multiplier * factor)

    def start_cooldown(self, seconds: float, now: float) -> None:
        self.cooldown_until = max(self.cooldown_until, now + seconds)
