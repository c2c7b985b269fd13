"""Rate limiter interface and shared bucket scaffolding."""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from limitgate.app.limiter.models import RateLimitResult, RateLimitStatus
from limitgate.app.limiter.state import BucketKeySchema, BucketStateStore, format_number


class RateLimiter(ABC):
    """Abstract base class for admission algorithms.

    Implementations raise StoreUnavailableError when the shared state
    cannot be read or written.
    """

    @abstractmethod
    async def allow(self, key: str) -> RateLimitResult:
        """Check whether one request for ``key`` is admitted and record it.

        Args:
            key: Rate limit key (IP, "apikey:<token>", "user:<id>")

        Returns:
            RateLimitResult with the decision and the remaining capacity
        """

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget all state for ``key``."""

    @abstractmethod
    async def get_status(self, key: str) -> RateLimitStatus:
        """Report the current bucket state for ``key``."""


class BucketRateLimiter(RateLimiter):
    """Common plumbing for the Redis-backed bucket algorithms.

    Subclasses set the class attributes describing their key scheme and
    implement ``allow`` and ``get_status``.
    """

    name: str
    rate_name: str
    description: str
    schema: BucketKeySchema

    def __init__(
        self,
        redis: Any,
        capacity: float,
        rate: float,
        ttl: int = 0,
        *,
        atomic: bool = False,
        strict: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the bucket.

        Args:
            redis: ``redis.asyncio`` client shared by all instances
            capacity: Maximum units the bucket holds
            rate: Units per second (leak or refill depending on algorithm)
            ttl: Seconds before idle state expires; 0 disables expiry
            atomic: Run ``allow`` as a single Lua script
            strict: Raise on malformed stored numbers
            clock: Time source returning Unix seconds

        Raises:
            ValueError: If capacity, rate or ttl is negative.
        """
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        if rate < 0:
            raise ValueError("rate must be >= 0")
        if ttl < 0:
            raise ValueError("ttl must be >= 0")

        self.capacity = float(capacity)
        self.rate = float(rate)
        self.ttl = int(ttl)
        self.atomic = atomic
        self.strict = strict
        self._clock = clock
        self._store = BucketStateStore(redis, self.schema, ttl=self.ttl, strict=strict)

    def _now(self) -> int:
        # One integer sample per operation
        return int(self._clock())

    @staticmethod
    def _elapsed(last_update: int, now: int) -> int:
        # A clock that moved backwards counts as no time passing
        return max(now - last_update, 0)

    def _denied(self) -> RateLimitResult:
        return RateLimitResult(allowed=False, remaining=0.0, limit=self.capacity, algorithm=self.name)

    def _admitted(self, remaining: float) -> RateLimitResult:
        return RateLimitResult(allowed=True, remaining=remaining, limit=self.capacity, algorithm=self.name)

    async def _allow_script(self, script: str, key: str, now: int) -> RateLimitResult:
        allowed, remaining = await self._store.run_script(
            script,
            key,
            format_number(self.capacity),  # ARGV[1]
            format_number(self.rate),  # ARGV[2]
            now,  # ARGV[3]
            self.ttl,  # ARGV[4]
            "1" if self.strict else "0",  # ARGV[5]
        )
        if not int(allowed):
            return self._denied()
        return self._admitted(float(remaining))

    async def reset(self, key: str) -> None:
        """Delete both state entries for ``key`` in one command."""
        await self._store.delete(key)

    async def list_keys(self) -> list[str]:
        """Rate limit keys this algorithm currently tracks."""
        return await self._store.scan_keys()

    def info(self) -> dict[str, Any]:
        """Describe this algorithm's configuration."""
        return {
            "current": self.name,
            "capacity": self.capacity,
            "rate": self.rate,
            "rate_name": self.rate_name,
            "description": self.description,
        }
