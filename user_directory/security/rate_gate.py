"""Named admission buckets consulted before sensitive operations."""

from __future__ import annotations

import logging
import math
from typing import Mapping, Protocol

from ..config import Settings
from ..domain.errors import RateLimitedError
from ..metrics import RATE_LIMITED
from .rate_limiter import RateDecision, SlidingWindowRateLimiter
from .redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)

LOGIN = "login"
API = "api"
API_ANONYMOUS = "api_anonymous"
SENSITIVE = "sensitive"

_MESSAGES = {
    LOGIN: "Too many login attempts. Please try again later.",
    API: "Too many API requests. Please slow down.",
    API_ANONYMOUS: "Too many requests from your IP. Please try again later.",
    SENSITIVE: "Too many sensitive operations. Please wait before trying again.",
}


class RateLimiter(Protocol):
    def acquire(self, key: str) -> RateDecision: ...

    def reset(self, key: str) -> None: ...


class RateGate:
    """Map bucket names onto limiters and raise when a key is over its limit."""

    def __init__(self, limiters: Mapping[str, RateLimiter], *, enabled: bool = True) -> None:
        self._limiters = dict(limiters)
        self._enabled = enabled

    def check(self, bucket: str, key: str) -> None:
        """Count one hit for ``key`` in ``bucket``; raise ``RateLimitedError`` when over the limit."""
        if not self._enabled:
            return
        limiter = self._limiters.get(bucket)
        if limiter is None:
            raise KeyError(f"unknown rate limit bucket: {bucket}")
        decision = limiter.acquire(f"{bucket}:{key}")
        if decision.allowed:
            return
        RATE_LIMITED.labels(bucket=bucket).inc()
        logger.warning(
            "rate limit exceeded",
            extra={"bucket": bucket, "key": key, "retry_after": decision.retry_after},
        )
        raise RateLimitedError(decision.retry_after, _MESSAGES.get(bucket))

    def reset(self, bucket: str, key: str) -> None:
        limiter = self._limiters.get(bucket)
        if limiter is not None:
            limiter.reset(f"{bucket}:{key}")


def _bucket_limits(settings: Settings) -> dict[str, int]:
    return {
        LOGIN: settings.login_attempts,
        API: settings.api_requests,
        API_ANONYMOUS: max(1, math.ceil(settings.api_requests * settings.anonymous_ratio)),
        SENSITIVE: settings.sensitive_operations,
    }


def build_rate_gate(settings: Settings) -> RateGate:
    """Instantiate the configured limiter backend for every bucket, preferring Redis when available."""
    limits = _bucket_limits(settings)
    window = settings.rate_limit_window_seconds

    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate gate configured for redis backend at %s", settings.redis_url)
            return RateGate(
                {
                    bucket: RedisSlidingWindowRateLimiter(
                        client, max_requests=limit, window_seconds=window
                    )
                    for bucket, limit in limits.items()
                },
                enabled=not settings.throttle_disabled,
            )
        except Exception as exc:  # pragma: no cover - fallback path
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate gate using in-memory backend")
    return RateGate(
        {
            bucket: SlidingWindowRateLimiter(max_requests=limit, window_seconds=window)
            for bucket, limit in limits.items()
        },
        enabled=not settings.throttle_disabled,
    )
