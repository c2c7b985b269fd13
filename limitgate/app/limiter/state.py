"""Redis encoding of per-key bucket state.

Each algorithm keeps two string entries per rate limit key:

- ``{prefix}:{key}:{level_field}`` - fill level (leaky) or token count (token)
- ``{prefix}:{key}:time`` - Unix seconds of the last update

Values are decimal strings. Writes always refresh the TTL; reset removes
both entries with a single DEL.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from redis.exceptions import RedisError, ResponseError

from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.exceptions import CorruptStateError, StoreUnavailableError
from limitgate.app.limiter.redis_lua import CORRUPT_REPLY_PREFIX

logger = get_logger(__name__)

T = TypeVar("T", int, float)


def format_number(value: float) -> str:
    """Encode a number in its shortest decimal form ("1", "2.5")."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


@dataclass(frozen=True)
class BucketKeySchema:
    """Naming scheme for one algorithm's Redis entries."""
    prefix: str
    level_field: str
    time_field: str = "time"

    def level_key(self, key: str) -> str:
        return f"{self.prefix}:{key}:{self.level_field}"

    def time_key(self, key: str) -> str:
        return f"{self.prefix}:{key}:{self.time_field}"

    @property
    def scan_pattern(self) -> str:
        """Pattern matching every fill-level entry of this scheme."""
        return f"{self.prefix}:*:{self.level_field}"

    def key_from_level_key(self, store_key: str) -> Optional[str]:
        """Recover the rate limit key from a fill-level entry name."""
        head = f"{self.prefix}:"
        tail = f":{self.level_field}"
        if not (store_key.startswith(head) and store_key.endswith(tail)):
            return None
        if len(store_key) < len(head) + len(tail):
            return None
        return store_key[len(head):len(store_key) - len(tail)]


class BucketStateStore:
    """Reads and writes the ``(level, last_update)`` pair of a bucket.

    All Redis failures surface as :class:`StoreUnavailableError` with the
    original error chained; nothing is retried here.
    """

    def __init__(
        self,
        redis: Any,
        schema: BucketKeySchema,
        ttl: int = 0,
        strict: bool = False,
    ) -> None:
        """Initialize the state store.

        Args:
            redis: ``redis.asyncio`` client (``decode_responses=True``).
            schema: Key naming scheme.
            ttl: Expiry in seconds applied to every write; 0 = no expiry.
            strict: Raise CorruptStateError on malformed numbers instead of
                reading them as zero.
        """
        self._redis = redis
        self.schema = schema
        self.ttl = ttl
        self.strict = strict

    def _fail(self, operation: str, key: str, exc: RedisError) -> StoreUnavailableError:
        logger.error(
            f"Redis {operation} failed: {exc}",
            extra=get_log_context(rate_limit_key=key, operation=operation),
        )
        return StoreUnavailableError(operation, key, str(exc))

    def _parse(self, store_key: str, raw: Optional[str], cast: Callable[[str], T]) -> Optional[T]:
        if raw is None:
            return None
        try:
            value = cast(raw)
        except (TypeError, ValueError):
            value = None
        if value is None or not math.isfinite(value):
            if self.strict:
                raise CorruptStateError(store_key, raw)
            logger.warning(f"Malformed value {raw!r} at {store_key}, reading as 0")
            return cast("0")
        return value

    async def read(self, key: str) -> tuple[Optional[float], Optional[int]]:
        """Fetch the stored level and timestamp.

        Returns:
            ``(level, last_update)``; each is None when its entry is absent.
        """
        level_key = self.schema.level_key(key)
        time_key = self.schema.time_key(key)
        try:
            raw_level, raw_time = await self._redis.mget(level_key, time_key)
        except RedisError as exc:
            raise self._fail("read", key, exc) from exc
        return (
            self._parse(level_key, raw_level, float),
            self._parse(time_key, raw_time, int),
        )

    async def write(self, key: str, level: float, now: int) -> None:
        """Persist both fields in one MULTI/EXEC pipeline with the TTL."""
        expiry = self.ttl or None
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.set(self.schema.level_key(key), format_number(level), ex=expiry)
            pipe.set(self.schema.time_key(key), str(now), ex=expiry)
            await pipe.execute()
        except RedisError as exc:
            raise self._fail("write", key, exc) from exc

    async def delete(self, key: str) -> None:
        """Delete both fields atomically. Deleting absent keys is a no-op."""
        try:
            await self._redis.delete(self.schema.level_key(key), self.schema.time_key(key))
        except RedisError as exc:
            raise self._fail("delete", key, exc) from exc

    async def scan_keys(self) -> list[str]:
        """List the rate limit keys that currently have a fill-level entry."""
        keys: dict[str, None] = {}
        try:
            async for store_key in self._redis.scan_iter(match=self.schema.scan_pattern):
                key = self.schema.key_from_level_key(store_key)
                if key is not None:
                    keys[key] = None
        except RedisError as exc:
            raise self._fail("scan", self.schema.scan_pattern, exc) from exc
        return list(keys)

    async def run_script(self, script: str, key: str, *args: Any) -> list[Any]:
        """Evaluate a Lua script over this key's two entries."""
        try:
            return await self._redis.eval(
                script,
                2,  # Number of keys
                self.schema.level_key(key),  # KEYS[1]
                self.schema.time_key(key),  # KEYS[2]
                *args,
            )
        except ResponseError as exc:
            corrupt = self._corrupt_from_reply(str(exc))
            if corrupt is not None:
                raise corrupt from exc
            raise self._fail("script", key, exc) from exc
        except RedisError as exc:
            raise self._fail("script", key, exc) from exc

    @staticmethod
    def _corrupt_from_reply(message: str) -> Optional[CorruptStateError]:
        # Script error reply: "CORRUPT <store key> <raw value>"
        start = message.find(CORRUPT_REPLY_PREFIX + " ")
        if start < 0:
            return None
        parts = message[start:].split(" ", 2)
        if len(parts) < 3:
            return None
        return CorruptStateError(parts[1], parts[2])
