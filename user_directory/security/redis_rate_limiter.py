"""Redis-backed sliding window rate limiter."""

from __future__ import annotations

import math
import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError

from .rate_limiter import RateDecision


class RedisSlidingWindowRateLimiter:
    """Distributed sliding window limiter implemented with Redis sorted sets."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    local current = redis.call('ZCARD', key)
    if current >= max_requests then
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        return {0, tonumber(oldest[2])}
    end
    local seq = redis.call('INCR', counter_key)
    redis.call('PEXPIRE', counter_key, window_ms)
    local member = tostring(now_ms) .. ':' .. tostring(seq)
    redis.call('ZADD', key, now_ms, member)
    redis.call('PEXPIRE', key, window_ms)
    return {1, 0}
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate"
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def acquire(self, key: str) -> RateDecision:
        """Record a hit for ``key`` unless the distributed window is already full."""
        now_ms = int(time.time() * 1000)
        redis_key = f"{self._key_prefix}:{key}"
        try:
            allowed, oldest_ms = self._script(
                keys=[redis_key], args=[self._window_ms, self._max_requests, now_ms]
            )
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._acquire_fallback(redis_key, now_ms)
            raise
        return self._decision(int(allowed) == 1, oldest_ms, now_ms)

    def reset(self, key: str) -> None:
        redis_key = f"{self._key_prefix}:{key}"
        self._client.delete(redis_key, f"{redis_key}:seq")

    def _decision(self, allowed: bool, oldest_ms: float | None, now_ms: int) -> RateDecision:
        if allowed:
            return RateDecision(True)
        remaining_ms = float(oldest_ms or now_ms) + self._window_ms - now_ms
        return RateDecision(False, max(1, math.ceil(remaining_ms / 1000)))

    def _acquire_fallback(self, redis_key: str, now_ms: int) -> RateDecision:
        """Fallback pure-Python implementation used when Lua is unavailable."""
        window_start = now_ms - self._window_ms
        self._client.zremrangebyscore(redis_key, 0, window_start)
        current = self._client.zcard(redis_key)
        if current >= self._max_requests:
            oldest = self._client.zrange(redis_key, 0, 0, withscores=True)
            return self._decision(False, oldest[0][1] if oldest else None, now_ms)
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        member = f"{now_ms}:{seq}"
        self._client.zadd(redis_key, {member: now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return RateDecision(True)
