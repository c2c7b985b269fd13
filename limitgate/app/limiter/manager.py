"""Runtime-switchable selection between the two admission algorithms."""

from typing import Any

from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.core.rwlock import ReadWriteLock
from limitgate.app.exceptions import CorruptStateError, InvalidAlgorithmError, StoreUnavailableError
from limitgate.app.limiter.base import BucketRateLimiter, RateLimiter
from limitgate.app.limiter.leaky_bucket import LeakyBucket
from limitgate.app.limiter.models import (
    ALGORITHMS,
    LEAKY_BUCKET,
    TOKEN_BUCKET,
    RateLimitResult,
    RateLimitStatus,
)
from limitgate.app.limiter.token_bucket import TokenBucket

logger = get_logger(__name__)


class LimiterManager(RateLimiter):
    """Holds both algorithms and forwards calls to the active one.

    The active algorithm is a name guarded by a reader/writer lock: every
    request takes the read side once to resolve the algorithm, an operator
    switch takes the write side to swap the name. A call that already
    resolved its algorithm finishes on it even if a switch happens meanwhile,
    so two consecutive calls for the same key may see different algorithms.
    """

    def __init__(
        self,
        leaky_bucket: LeakyBucket,
        token_bucket: TokenBucket,
        default_algorithm: str = LEAKY_BUCKET,
    ) -> None:
        """Initialize the manager.

        Args:
            leaky_bucket: Leaky bucket instance
            token_bucket: Token bucket instance
            default_algorithm: "leaky_bucket" or "token_bucket"

        Raises:
            InvalidAlgorithmError: If default_algorithm is not recognized.
        """
        if default_algorithm not in ALGORITHMS:
            raise InvalidAlgorithmError(default_algorithm, ALGORITHMS)
        self._limiters: dict[str, BucketRateLimiter] = {
            LEAKY_BUCKET: leaky_bucket,
            TOKEN_BUCKET: token_bucket,
        }
        self._current = default_algorithm
        self._lock = ReadWriteLock()

    @property
    def leaky_bucket(self) -> LeakyBucket:
        return self._limiters[LEAKY_BUCKET]

    @property
    def token_bucket(self) -> TokenBucket:
        return self._limiters[TOKEN_BUCKET]

    def get_current_algorithm(self) -> str:
        """Return the name of the currently active algorithm."""
        with self._lock.read_lock():
            return self._current

    def set_algorithm(self, algorithm: str) -> bool:
        """Switch the active algorithm.

        Returns:
            True if the switch happened, False for an unknown name (nothing
            changes in that case).
        """
        if algorithm not in ALGORITHMS:
            logger.warning(f"Rejected switch to unknown algorithm {algorithm!r}")
            return False
        with self._lock.write_lock():
            previous, self._current = self._current, algorithm
        if previous != algorithm:
            logger.info(
                f"Rate limit algorithm switched from {previous} to {algorithm}",
                extra=get_log_context(algorithm=algorithm),
            )
        return True

    def get_active(self) -> BucketRateLimiter:
        """Return the algorithm instance selected right now."""
        with self._lock.read_lock():
            return self._limiters[self._current]

    async def allow(self, key: str) -> RateLimitResult:
        return await self.get_active().allow(key)

    async def reset(self, key: str) -> None:
        await self.get_active().reset(key)

    async def get_status(self, key: str) -> RateLimitStatus:
        return await self.get_active().get_status(key)

    def get_algorithm_info(self) -> dict[str, Any]:
        """Describe the active algorithm's configuration for operators."""
        return self.get_active().info()

    async def list_keys(self) -> list[str]:
        """Keys tracked by the active algorithm."""
        return await self.get_active().list_keys()

    async def list_statuses(self) -> list[RateLimitStatus]:
        """Status snapshots for every key the active algorithm tracks.

        Keys that cannot be read between the scan and the status call are
        skipped; a failing scan propagates.
        """
        limiter = self.get_active()
        statuses: list[RateLimitStatus] = []
        for key in await limiter.list_keys():
            try:
                statuses.append(await limiter.get_status(key))
            except (StoreUnavailableError, CorruptStateError) as exc:
                logger.warning(
                    f"Skipping key in listing: {exc}",
                    extra=get_log_context(rate_limit_key=key, algorithm=limiter.name),
                )
        return statuses
