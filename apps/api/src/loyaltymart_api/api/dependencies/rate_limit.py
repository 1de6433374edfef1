"""Per-client request limiting for the accrual polling endpoint."""

from __future__ import annotations

from typing import Sequence

from fastapi import Request
from fastapi.responses import PlainTextResponse
from loguru import logger
from redis.exceptions import RedisError

from loyaltymart_api.services.rate_limit import RateLimiter


class RateLimitExceededError(Exception):
    def __init__(self, limit: int, window_seconds: float, retry_after_seconds: int) -> None:
        super().__init__(f"Rate limit of {limit} requests exceeded")
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after_seconds = retry_after_seconds

    @property
    def message(self) -> str:
        if self.window_seconds == 60:
            period = "minute"
        else:
            period = f"{self.window_seconds:g} seconds"
        return f"No more than {self.limit} requests per {period} allowed"


def resolve_client_key(request: Request, trusted_proxies: Sequence[str]) -> str:
    """Client address, honouring ``X-Forwarded-For`` only from trusted proxies."""

    host = request.client.host if request.client else "unknown"
    if host in trusted_proxies:
        forwarded = request.headers.get("X-Forwarded-For", "")
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    return host


async def enforce_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    trusted_proxies: Sequence[str] = getattr(request.app.state, "trusted_proxies", ())
    key = resolve_client_key(request, trusted_proxies)

    try:
        decision = await limiter.check(key)
    except RedisError as exc:
        # fail open
        logger.warning("Rate limiter backend unavailable", client=key, error=str(exc))
        return

    if not decision.allowed:
        logger.info(
            "Request rate limited",
            client=key,
            path=request.url.path,
            retry_after_seconds=decision.retry_after_seconds,
        )
        raise RateLimitExceededError(
            limit=limiter.limit,
            window_seconds=limiter.window_seconds,
            retry_after_seconds=decision.retry_after_seconds or 1,
        )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> PlainTextResponse:
    return PlainTextResponse(
        exc.message,
        status_code=429,
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )
