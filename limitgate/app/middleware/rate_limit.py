"""Rate limiting middleware.

This module turns the limiter's allow/deny decision into HTTP: admitted
requests get an ``X-RateLimit-Remaining`` header, denied ones a 429, and a
failed check (state store unreachable) a 503 so clients can tell "try again
later" apart from "over budget".
"""

from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.exceptions import LimitGateError
from limitgate.app.limiter.base import RateLimiter

logger = get_logger(__name__)

KeyFunc = Callable[[Request], str]

REMAINING_HEADER = "X-RateLimit-Remaining"


def client_ip_key(request: Request) -> str:
    """Use the client IP as the rate limit key.

    The first X-Forwarded-For hop wins over the socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def api_key_key(header_name: str = "X-API-Key") -> KeyFunc:
    """Build a key function that limits per API key, falling back to IP."""
    def _key(request: Request) -> str:
        api_key = request.headers.get(header_name, "").strip()
        if not api_key:
            return client_ip_key(request)
        return f"apikey:{api_key}"
    return _key


def user_id_key(state_attr: str = "user_id") -> KeyFunc:
    """Build a key function that limits per authenticated user, falling back to IP.

    The user id is read from ``request.state.<state_attr>``, which an
    upstream authentication layer is expected to set.
    """
    def _key(request: Request) -> str:
        user_id = getattr(request.state, state_attr, None)
        if user_id is None or user_id == "":
            return client_ip_key(request)
        return f"user:{user_id}"
    return _key


def key_func_for_strategy(
    strategy: str,
    api_key_header: str = "X-API-Key",
    user_id_attr: str = "user_id",
) -> KeyFunc:
    """Map a configured key strategy name to its key function."""
    if strategy == "api_key":
        return api_key_key(api_key_header)
    if strategy == "user_id":
        return user_id_key(user_id_attr)
    if strategy == "ip":
        return client_ip_key
    raise ValueError(f"Unknown rate limit key strategy: {strategy}")


def format_remaining(remaining: float) -> str:
    """Render remaining capacity as a whole number for the header."""
    return f"{remaining:.0f}"


def default_denied_response(request: Request, remaining: float) -> Response:
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Rate limit exceeded. Please try again later.",
        },
        headers={REMAINING_HEADER: format_remaining(remaining)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Every request outside the exempt path prefixes costs one unit from the
    bucket of the key produced by ``key_func``. Store errors are not retried
    here.
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        key_func: Optional[KeyFunc] = None,
        denied_handler: Optional[Callable[[Request, float], Response]] = None,
        exempt_prefixes: Iterable[str] = (),
    ):
        super().__init__(app)
        if limiter is None:
            raise ValueError("RateLimitMiddleware requires a limiter")
        self.limiter = limiter
        self.key_func = key_func or client_ip_key
        self.denied_handler = denied_handler or default_denied_response
        self.exempt_prefixes = tuple(exempt_prefixes)

    def _is_exempt(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.exempt_prefixes
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if self._is_exempt(request.url.path):
            return await call_next(request)

        key = self.key_func(request)
        try:
            allowed, remaining = await self.limiter.allow(key)
        except LimitGateError as exc:
            logger.error(
                f"Rate limit check failed: {exc}",
                extra=get_log_context(rate_limit_key=key, path=request.url.path, method=request.method),
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": "Failed to check rate limit",
                },
            )

        if not allowed:
            logger.info(
                "Rate limit exceeded",
                extra=get_log_context(rate_limit_key=key, path=request.url.path, method=request.method),
            )
            return self.denied_handler(request, remaining)

        response = await call_next(request)
        response.headers[REMAINING_HEADER] = format_remaining(remaining)
        return response
