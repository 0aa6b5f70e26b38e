"""Retry policy consumed by RequestExecutor.

The policy is plain data so it can be tested and tuned without touching
the executor's control flow.
"""

from dataclasses import dataclass, field

from collector.config import RetrySettings
from collector.models import ErrorType


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts and backoff for one logical request.

    The delay after failed attempt ``n`` (1-based) is
    ``min(2**n * base_delay, max_delay)``, raised to the floor for the
    failure's ErrorType.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    floors: dict[ErrorType, float] = field(
        default_factory=lambda: {
            ErrorType.RATE_LIMIT: 10.0,
            ErrorType.SERVER_ERROR: 5.0,
            ErrorType.NETWORK_ERROR: 0.0,
        }
    )

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            floors={
                ErrorType.RATE_LIMIT: settings.rate_limit_floor,
                ErrorType.SERVER_ERROR: settings.server_error_floor,
                ErrorType.NETWORK_ERROR: settings.network_error_floor,
            },
        )

    def should_retry(self, error_type: ErrorType, attempt: int, max_attempts: int | None = None) -> bool:
        limit = max_attempts if max_attempts is not None else self.max_attempts
        return error_type.retryable and attempt < limit

    def delay_for(self, attempt: int, error_type: ErrorType) -> float:
        """Seconds to wait after failed attempt ``attempt`` before the next one."""
        delay = min((2**attempt) * self.base_delay, self.max_delay)
        return max(delay, self.floors.get(error_type, 0.0))
