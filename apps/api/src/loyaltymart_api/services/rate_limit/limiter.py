"""Per-client sliding-window request limiting."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol
from uuid import uuid4

from redis.asyncio import Redis


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check for one client key."""

    allowed: bool
    remaining: int
    retry_after_seconds: int | None


class RateLimiter(Protocol):
    limit: int
    window_seconds: float

    async def check(self, key: str) -> RateLimitDecision:
        ...


class SlidingWindowRateLimiter:
    """In-process limiter keeping the timestamps of allowed calls per key.

    A call is allowed iff fewer than ``limit`` allowed calls remain inside
    the trailing window; only allowed calls are recorded. Keys whose window
    empties are dropped, and a full prune runs whenever more than
    ``max_clients`` keys are tracked.
    """

    def __init__(
        self,
        *,
        limit: int = 10,
        window_seconds: float = 60.0,
        max_clients: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._max_clients = max_clients
        self._clock = clock
        self._lock = Lock()
        self._calls: dict[str, deque[float]] = {}

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._calls)

    def allow(self, key: str) -> bool:
        return self._evaluate(key).allowed

    async def check(self, key: str) -> RateLimitDecision:
        return self._evaluate(key)

    def _evaluate(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            calls = self._calls.get(key)
            if calls is None:
                calls = deque()
            self._prune(calls, now)

            if len(calls) >= self.limit:
                self._calls[key] = calls
                retry_after = max(1, math.ceil(calls[0] + self.window_seconds - now))
                return RateLimitDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)

            calls.append(now)
            self._calls[key] = calls
            if len(self._calls) > self._max_clients:
                self._evict_idle(now)
            return RateLimitDecision(
                allowed=True,
                remaining=self.limit - len(calls),
                retry_after_seconds=None,
            )

    def _prune(self, calls: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while calls and calls[0] <= cutoff:
            calls.popleft()

    def _evict_idle(self, now: float) -> None:
        for key in list(self._calls):
            calls = self._calls[key]
            self._prune(calls, now)
            if not calls:
                del self._calls[key]


class RedisSlidingWindowRateLimiter:
    """Redis sorted-set limiter sharing the window across service replicas."""

    def __init__(
        self,
        redis_client: Redis,
        *,
        limit: int = 10,
        window_seconds: float = 60.0,
        key_prefix: str = "accrual:ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisSlidingWindowRateLimiter":
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, **kwargs)

    def _key(self, identifier: str) -> str:
        return f"{self._key_prefix}:{identifier}"

    async def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        redis_key = self._key(key)
        member = f"{now:.6f}:{uuid4().hex}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now - self.window_seconds)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, math.ceil(self.window_seconds))
        _, _, count, _ = await pipe.execute()

        if count > self.limit:
            await self._redis.zrem(redis_key, member)
            oldest = await self._redis.zrange(redis_key, 0, 0, withscores=True)
            retry_after = self.window_seconds
            if oldest:
                retry_after = oldest[0][1] + self.window_seconds - now
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(retry_after)),
            )

        return RateLimitDecision(allowed=True, remaining=self.limit - count, retry_after_seconds=None)

    async def aclose(self) -> None:
        await self._redis.aclose()


__all__ = [
    "RateLimitDecision",
    "RateLimiter",
    "RedisSlidingWindowRateLimiter",
    "SlidingWindowRateLimiter",
]
