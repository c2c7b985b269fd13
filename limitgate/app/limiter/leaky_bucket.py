"""Leaky bucket admission algorithm.

Each admitted request pours one unit of water into the bucket and the bucket
drains continuously at ``leak_rate`` units per second. A request is admitted
only while the drained level is strictly below capacity.
"""

from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.limiter.base import BucketRateLimiter
from limitgate.app.limiter.models import LEAKY_BUCKET, RateLimitResult, RateLimitStatus
from limitgate.app.limiter.redis_lua import LEAKY_BUCKET_ALLOW_SCRIPT
from limitgate.app.limiter.state import BucketKeySchema

logger = get_logger(__name__)


class LeakyBucket(BucketRateLimiter):
    """Leaky bucket rate limiter backed by Redis.

    Redis key format:
    - bucket:{key}:water - current water level
    - bucket:{key}:time - Unix seconds of the last update

    An unseen key starts with an empty bucket. With ``leak_rate == 0`` the
    bucket never drains and only a reset empties it; ``capacity == 0``
    denies everything.
    """

    name = LEAKY_BUCKET
    rate_name = "leak_rate"
    description = "Requests add water; water leaks at constant rate. Full bucket = blocked."
    schema = BucketKeySchema(prefix="bucket", level_field="water")

    @property
    def leak_rate(self) -> float:
        return self.rate

    def _drain(self, level: float, last_update: int, now: int) -> float:
        drained = level - self._elapsed(last_update, now) * self.rate
        return max(drained, 0.0)

    async def _drained_level(self, key: str, now: int) -> float:
        level, last_update = await self._store.read(key)
        return self._drain(
            level if level is not None else 0.0,
            last_update if last_update is not None else now,
            now,
        )

    async def allow(self, key: str) -> RateLimitResult:
        """Admit one request if the drained bucket still has room.

        Denials leave the stored state untouched.
        """
        now = self._now()
        if self.atomic:
            return await self._allow_script(LEAKY_BUCKET_ALLOW_SCRIPT, key, now)

        drained = await self._drained_level(key, now)
        if drained >= self.capacity:
            logger.debug(
                "Leaky bucket full",
                extra=get_log_context(rate_limit_key=key, algorithm=self.name, level=drained),
            )
            return self._denied()

        new_level = drained + 1
        await self._store.write(key, new_level, now)
        return self._admitted(max(self.capacity - new_level, 0.0))

    async def get_status(self, key: str) -> RateLimitStatus:
        """Report the drained level without writing anything back."""
        drained = await self._drained_level(key, self._now())
        current = min(drained, self.capacity)
        return RateLimitStatus(
            key=key,
            current=current,
            capacity=self.capacity,
            remaining=self.capacity - current,
            rate=self.rate,
            is_limited=drained >= self.capacity,
            algorithm=self.name,
        )
