"""Core infrastructure: settings, logging, Redis client and locking."""

from limitgate.app.core.config import Settings, settings
from limitgate.app.core.logging import get_log_context, get_logger, setup_logging
from limitgate.app.core.redis import close_redis, create_redis_client, ping_redis
from limitgate.app.core.rwlock import ReadWriteLock

__all__ = [
    "Settings",
    "settings",
    "get_log_context",
    "get_logger",
    "setup_logging",
    "close_redis",
    "create_redis_client",
    "ping_redis",
    "ReadWriteLock",
]
