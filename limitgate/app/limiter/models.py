"""Rate limiting data models.

This module contains dataclasses for admission results and status snapshots.
"""

from dataclasses import asdict, dataclass
from typing import Any, Iterator

LEAKY_BUCKET = "leaky_bucket"
TOKEN_BUCKET = "token_bucket"
ALGORITHMS = (LEAKY_BUCKET, TOKEN_BUCKET)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of one admission check.

    Unpacks as ``allowed, remaining = result``.
    """
    allowed: bool
    remaining: float
    limit: float
    algorithm: str

    def __iter__(self) -> Iterator[Any]:
        yield self.allowed
        yield self.remaining


@dataclass(frozen=True)
class RateLimitStatus:
    """Algorithm-agnostic snapshot of one key's bucket.

    ``current + remaining == capacity`` holds for every snapshot: the leaky
    bucket reports its fill level as usage, the token bucket reports the
    tokens already spent.
    """
    key: str
    current: float
    capacity: float
    remaining: float
    rate: float
    is_limited: bool
    algorithm: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
