"""Inbound request rate limiting."""

from .limiter import (  # noqa: F401
    RateLimitDecision,
    RateLimiter,
    RedisSlidingWindowRateLimiter,
    SlidingWindowRateLimiter,
)
