"""Redis client factory for the shared bucket state store.

Every service instance points at the same Redis so all of them enforce one
limit per key. The client is created lazily (no connection until the first
command) and owned by the application lifespan.
"""

from typing import Any

import redis.asyncio as aioredis

from limitgate.app.core.config import Settings, settings as default_settings


def create_redis_client(config: Settings | None = None) -> aioredis.Redis:
    """Create an asyncio Redis client from settings.

    Responses are decoded to ``str`` because every stored value is a
    decimal string.

    Args:
        config: Settings to read the URL and timeout from (defaults to global).

    Returns:
        A ``redis.asyncio.Redis`` client backed by a connection pool.
    """
    cfg = config or default_settings
    return aioredis.from_url(
        cfg.redis_url,
        decode_responses=True,
        socket_timeout=cfg.redis_socket_timeout,
        socket_connect_timeout=cfg.redis_socket_timeout,
    )


async def ping_redis(client: Any) -> bool:
    """Return True when the store answers PING.

    Errors propagate; callers decide how to report an unreachable store.
    """
    return bool(await client.ping())


async def close_redis(client: Any) -> None:
    """Close the Redis connection pool."""
    # Use aclose() for proper async cleanup in redis-py 5.0+
    await client.aclose()
