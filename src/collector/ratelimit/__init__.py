"""Client-side quota enforcement shared by all exchange consumers."""

from collector.ratelimit.budget import RateBudget
from collector.ratelimit.limiter import RateLimiter

__all__ = ["RateBudget", "RateLimiter"]
