"""Middleware package for the rate limiting service."""

from limitgate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    api_key_key,
    client_ip_key,
    key_func_for_strategy,
    user_id_key,
)
from limitgate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "RateLimitMiddleware",
    "api_key_key",
    "client_ip_key",
    "key_func_for_strategy",
    "user_id_key",
    "RequestIdMiddleware",
    "get_request_id",
]
