from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from limitgate.app.api.dashboard import router as dashboard_router
from limitgate.app.core.config import Settings, settings as default_settings
from limitgate.app.core.logging import get_logger, setup_logging
from limitgate.app.core.redis import close_redis, create_redis_client, ping_redis
from limitgate.app.exceptions import LimitGateError
from limitgate.app.limiter import build_limiter_manager
from limitgate.app.middleware.rate_limit import RateLimitMiddleware, key_func_for_strategy
from limitgate.app.middleware.request_id import RequestIdMiddleware


def create_app(config: Optional[Settings] = None, redis_client: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to build from (defaults to the global settings)
        redis_client: Pre-built Redis client; one is created from
            ``config.redis_url`` when omitted

    Returns:
        Configured FastAPI application instance
    """
    cfg = config or default_settings

    setup_logging(cfg)
    logger = get_logger(__name__)

    redis = redis_client if redis_client is not None else create_redis_client(cfg)
    manager = build_limiter_manager(redis, cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        The Redis pool connects lazily; shutdown closes it.
        """
        logger.info(
            "Application startup complete",
            extra={
                "algorithm": manager.get_current_algorithm(),
                "rate_limit_enabled": cfg.rate_limit_enabled,
                "debug_mode": cfg.debug,
            },
        )
        yield
        await close_redis(redis)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="LimitGate",
        description="Per-key rate limiting with switchable leaky and token bucket algorithms",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.redis = redis
    app.state.limiter_manager = manager

    # Add middleware (order matters: last added = first executed)
    if cfg.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=manager,
            key_func=key_func_for_strategy(
                cfg.rate_limit_key_strategy,
                api_key_header=cfg.rate_limit_api_key_header,
                user_id_attr=cfg.rate_limit_user_id_attr,
            ),
            exempt_prefixes=cfg.rate_limit_exempt_prefixes,
        )

    # Request ID middleware (outermost, so rate limit logs carry the id)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(dashboard_router, prefix="/dashboard/api", tags=["dashboard"])

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        """Demo endpoint guarded by the rate limiter."""
        return {"message": "pong"}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with state store connectivity and active algorithm."""
        health_status: dict[str, Any] = {
            "status": "ok",
            "algorithm": manager.get_current_algorithm(),
            "components": {},
        }

        try:
            await ping_redis(redis)
            health_status["components"]["redis"] = {"status": "ok"}
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["redis"] = {
                "status": "error",
                "error": str(e)[:100],  # Truncate for security
            }

        return health_status

    @app.exception_handler(LimitGateError)
    async def limitgate_error_handler(request: Request, exc: LimitGateError) -> JSONResponse:
        """Map service exceptions to their HTTP status code."""
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback; debug mode adds the exception message.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        if cfg.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


# Create the application instance
app = create_app()
