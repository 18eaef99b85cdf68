"""Rate limiting: inbound (slowapi, per client IP) and outbound (per Shopify store).

Inbound: a slowapi Limiter keyed by remote address guards the sync trigger
endpoints. Storage is in-memory, so limits are per worker process.

Outbound: Shopify enforces a hard per-store request ceiling. Every store gets
its own TokenBucket from the registry; the sync executor awaits
`acquire()` before each remote mutation. Runs are therefore serial inside
one store and free to run side by side across stores.
"""

import asyncio
import time

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)


class TokenBucket:
    """Async token bucket with an optional minimum spacing between grants.

    capacity tokens refill at refill_per_second. acquire() waits until a
    token is free, then also honours min_interval since the previous grant.
    Returns the seconds it spent waiting.
    """

    def __init__(
        self,
        capacity: int = 2,
        refill_per_second: float = 2.0,
        min_interval: float = 0.0,
        *,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        if capacity < 1 or refill_per_second <= 0:
            raise ValueError("capacity must be >= 1 and refill_per_second > 0")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._last_grant: float | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop = None

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_per_second)
        self._updated = now

    def _get_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it is first used on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self) -> float:
        async with self._get_lock():
            waited = 0.0
            if self.min_interval and self._last_grant is not None:
                gap = self.min_interval - (self._clock() - self._last_grant)
                if gap > 0:
                    await self._sleep(gap)
                    waited += gap

            self._refill()
            if self._tokens < 1:
                wait = (1 - self._tokens) / self.refill_per_second
                await self._sleep(wait)
                waited += wait
                self._tokens = 1.0
                self._updated = self._clock()

            self._tokens -= 1
            self._last_grant = self._clock()
            return waited


class RateLimiterRegistry:
    """One TokenBucket per store domain, created on first use."""

    def __init__(self, factory=None):
        self._factory = factory or _default_bucket
        self._buckets: dict[str, TokenBucket] = {}

    def get(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._factory()
            self._buckets[key] = bucket
        return bucket

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._buckets


def _default_bucket() -> TokenBucket:
    return TokenBucket(
        capacity=settings.sync_bucket_capacity,
        refill_per_second=settings.sync_bucket_refill_per_second,
        min_interval=settings.sync_call_delay_ms / 1000,
    )


store_limiters = RateLimiterRegistry()


def get_store_limiter(store_domain: str) -> TokenBucket:
    """Shared per-store bucket used by every sync run in this process."""
    return store_limiters.get(store_domain)
