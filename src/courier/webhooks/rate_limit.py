"""Per-endpoint token bucket rate limiting.

Each endpoint gets its own bucket that refills continuously at
``per_hour / 3600`` tokens per second. Running out of tokens defers a
delivery; it is never recorded as a failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from courier.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class RateLimit:
    """Bucket shape: how many tokens it holds and how fast it refills."""

    capacity: float
    refill_per_second: float

    @classmethod
    def per_hour(cls, limit: int, burst: float | None = None) -> RateLimit:
        return cls(
            capacity=float(burst if burst is not None else limit),
            refill_per_second=limit / SECONDS_PER_HOUR,
        )


class TokenBucket:
    """Continuously refilling token bucket.

    Args:
        limit: Capacity and refill rate.
        clock: Monotonic clock in seconds.
    """

    def __init__(self, limit: RateLimit, clock: Callable[[], float] = time.monotonic) -> None:
        if limit.capacity <= 0:
            raise ValueError("capacity must be positive")
        if limit.refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")
        self.limit = limit
        self._clock = clock
        self._tokens = limit.capacity
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.limit.capacity, self._tokens + elapsed * self.limit.refill_per_second)
        self._last_refill = now

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def try_consume(self) -> bool:
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def retry_after(self) -> float:
        """Seconds until one token is available (0 if one is available now)."""
        self._refill()
        deficit = 1.0 - self._tokens
        if deficit <= 0:
            return 0.0
        return deficit / self.limit.refill_per_second


class RateLimiter:
    """Token buckets keyed by endpoint id.

    Buckets are created on first use. When an endpoint's limit changes the
    bucket is rebuilt full with the new shape.

    Args:
        default: Limit applied to endpoints without an override.
        burst: Capacity used for per-endpoint overrides, if set.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        default: RateLimit,
        burst: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default = default
        self.burst = burst
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        per_hour: int,
        burst: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> RateLimiter:
        return cls(RateLimit.per_hour(per_hour, burst), burst=burst, clock=clock)

    def limit_for(self, override_per_hour: int | None) -> RateLimit:
        if override_per_hour is None:
            return self.default
        return RateLimit.per_hour(override_per_hour, self.burst)

    def _bucket(self, endpoint_id: str, limit: RateLimit) -> TokenBucket:
        bucket = self._buckets.get(endpoint_id)
        if bucket is None or bucket.limit != limit:
            bucket = TokenBucket(limit, clock=self._clock)
            self._buckets[endpoint_id] = bucket
        return bucket

    async def try_acquire(self, endpoint_id: str, override_per_hour: int | None = None) -> bool:
        """Take one token for the endpoint if available."""
        async with self._lock:
            bucket = self._bucket(endpoint_id, self.limit_for(override_per_hour))
            acquired = bucket.try_consume()
        if not acquired:
            logger.debug("Rate limit exhausted", endpoint_id=endpoint_id)
        return acquired

    async def retry_after(self, endpoint_id: str, override_per_hour: int | None = None) -> float:
        """Seconds until the endpoint's next token."""
        async with self._lock:
            return self._bucket(endpoint_id, self.limit_for(override_per_hour)).retry_after()

    def reset(self, endpoint_id: str) -> None:
        """Forget an endpoint's bucket; the next acquire starts full."""
        self._buckets.pop(endpoint_id, None)
