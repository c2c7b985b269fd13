"""Redis-backed admission control.

Two algorithms share one state encoding and one interface; the manager
switches between them at runtime.
"""

from typing import Any, Optional

from limitgate.app.core.config import Settings, settings as default_settings
from limitgate.app.limiter.base import BucketRateLimiter, RateLimiter
from limitgate.app.limiter.leaky_bucket import LeakyBucket
from limitgate.app.limiter.manager import LimiterManager
from limitgate.app.limiter.models import (
    ALGORITHMS,
    LEAKY_BUCKET,
    TOKEN_BUCKET,
    RateLimitResult,
    RateLimitStatus,
)
from limitgate.app.limiter.state import BucketKeySchema, BucketStateStore, format_number
from limitgate.app.limiter.token_bucket import TokenBucket

__all__ = [
    # Models
    "ALGORITHMS",
    "LEAKY_BUCKET",
    "TOKEN_BUCKET",
    "RateLimitResult",
    "RateLimitStatus",
    # State encoding
    "BucketKeySchema",
    "BucketStateStore",
    "format_number",
    # Algorithms
    "RateLimiter",
    "BucketRateLimiter",
    "LeakyBucket",
    "TokenBucket",
    # Manager
    "LimiterManager",
    "build_limiter_manager",
]


def build_limiter_manager(redis: Any, config: Optional[Settings] = None) -> LimiterManager:
    """Create a manager with both algorithms configured from settings.

    Args:
        redis: ``redis.asyncio`` client holding the shared state
        config: Settings to use (defaults to the global settings)
    """
    cfg = config or default_settings
    common = {
        "ttl": cfg.rate_limit_state_ttl_seconds,
        "atomic": cfg.rate_limit_atomic,
        "strict": cfg.rate_limit_strict_state,
    }
    leaky = LeakyBucket(
        redis,
        cfg.leaky_bucket_capacity,
        cfg.leaky_bucket_leak_rate,
        **common,
    )
    token = TokenBucket(
        redis,
        cfg.token_bucket_capacity,
        cfg.token_bucket_refill_rate,
        refresh_on_status=cfg.token_bucket_status_refresh,
        **common,
    )
    return LimiterManager(leaky, token, default_algorithm=cfg.rate_limit_algorithm)
