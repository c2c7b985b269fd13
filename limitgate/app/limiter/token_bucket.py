"""Token bucket admission algorithm.

Unlike the leaky bucket which drains at a constant rate, the token bucket:
- Refills tokens at a constant rate
- Each request consumes 1 token
- If no tokens are available, the request is denied
- Allows bursts up to bucket capacity
"""

from typing import Any

from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.limiter.base import BucketRateLimiter
from limitgate.app.limiter.models import TOKEN_BUCKET, RateLimitResult, RateLimitStatus
from limitgate.app.limiter.redis_lua import TOKEN_BUCKET_ALLOW_SCRIPT
from limitgate.app.limiter.state import BucketKeySchema

logger = get_logger(__name__)


class TokenBucket(BucketRateLimiter):
    """Token bucket rate limiter backed by Redis.

    Redis key format:
    - token:{key}:tokens - tokens currently available
    - token:{key}:time - Unix seconds of the last refill

    An unseen key starts with a full bucket. With ``refill_rate == 0`` the
    bucket only empties and a reset is needed to refill it.

    Status reads may refresh persisted decay: when ``refresh_on_status`` is
    on and the key already exists, ``get_status`` writes the refilled token
    count back (which also renews the TTL).
    """

    name = TOKEN_BUCKET
    rate_name = "refill_rate"
    description = "Tokens refill at constant rate; requests consume tokens. No tokens = blocked."
    schema = BucketKeySchema(prefix="token", level_field="tokens")

    def __init__(self, *args: Any, refresh_on_status: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.refresh_on_status = refresh_on_status

    @property
    def refill_rate(self) -> float:
        return self.rate

    def _refill(self, tokens: float, last_update: int, now: int) -> float:
        refilled = max(tokens, 0.0) + self._elapsed(last_update, now) * self.rate
        return min(self.capacity, refilled)

    async def allow(self, key: str) -> RateLimitResult:
        """Consume one token if at least one is available after refill."""
        now = self._now()
        if self.atomic:
            return await self._allow_script(TOKEN_BUCKET_ALLOW_SCRIPT, key, now)

        tokens, last_update = await self._store.read(key)
        refilled = self._refill(
            tokens if tokens is not None else self.capacity,
            last_update if last_update is not None else now,
            now,
        )
        if refilled < 1:
            logger.debug(
                "Token bucket empty",
                extra=get_log_context(rate_limit_key=key, algorithm=self.name, tokens=refilled),
            )
            return self._denied()

        new_tokens = refilled - 1
        await self._store.write(key, new_tokens, now)
        return self._admitted(new_tokens)

    async def get_status(self, key: str) -> RateLimitStatus:
        """Report available tokens; usage is the number of tokens spent."""
        now = self._now()
        stored, last_update = await self._store.read(key)
        last_update = last_update if last_update is not None else now
        tokens = self._refill(
            stored if stored is not None else self.capacity,
            last_update,
            now,
        )

        if self.refresh_on_status and stored is not None and self._elapsed(last_update, now) > 0:
            await self._store.write(key, tokens, now)

        return RateLimitStatus(
            key=key,
            current=self.capacity - tokens,
            capacity=self.capacity,
            remaining=tokens,
            rate=self.rate,
            is_limited=tokens < 1,
            algorithm=self.name,
        )
