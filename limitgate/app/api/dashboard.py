"""Dashboard JSON endpoints.

Read-mostly operator views over the limiter: per-key status, the list of
tracked keys, key reset, a demo admission check and the algorithm switch.
Store failures surface as 503 through the application's exception handler.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from limitgate.app.api.dependencies import get_limiter_manager
from limitgate.app.core.logging import get_log_context, get_logger
from limitgate.app.exceptions import InvalidAlgorithmError, MissingKeyError
from limitgate.app.limiter.manager import LimiterManager
from limitgate.app.limiter.models import ALGORITHMS
from limitgate.app.middleware.rate_limit import client_ip_key

logger = get_logger(__name__)
router = APIRouter()


class ResetRequest(BaseModel):
    key: str = Field(default="", description="Rate limit key to reset")


class AlgorithmRequest(BaseModel):
    algorithm: str = Field(..., description="leaky_bucket or token_bucket")


@router.get("/status")
async def get_status(
    request: Request,
    key: str = "",
    manager: LimiterManager = Depends(get_limiter_manager),
) -> dict[str, Any]:
    """Status snapshot for ``key`` (defaults to the caller's IP)."""
    status = await manager.get_status(key or client_ip_key(request))
    return status.to_dict()


@router.get("/keys")
async def list_keys(manager: LimiterManager = Depends(get_limiter_manager)) -> dict[str, Any]:
    """Status of every key the active algorithm tracks."""
    statuses = await manager.list_statuses()
    return {
        "algorithm": manager.get_current_algorithm(),
        "keys": [status.to_dict() for status in statuses],
    }


@router.post("/reset")
async def reset_key(
    body: ResetRequest,
    manager: LimiterManager = Depends(get_limiter_manager),
) -> dict[str, Any]:
    """Clear the bucket for one key and return its fresh status."""
    key = body.key.strip()
    if not key:
        raise MissingKeyError()

    await manager.reset(key)
    logger.info("Rate limit reset", extra=get_log_context(rate_limit_key=key))
    status = await manager.get_status(key)
    return {
        "status": status.to_dict(),
        "message": f"Rate limit for '{key}' reset successfully",
    }


@router.post("/test")
async def test_request(
    request: Request,
    manager: LimiterManager = Depends(get_limiter_manager),
) -> dict[str, Any]:
    """Run one admission check for the caller's IP."""
    key = client_ip_key(request)
    result = await manager.allow(key)
    return {
        "key": key,
        "allowed": result.allowed,
        "remaining": result.remaining,
        "algorithm": result.algorithm,
    }


@router.get("/algorithm")
async def get_algorithm(manager: LimiterManager = Depends(get_limiter_manager)) -> dict[str, Any]:
    """Configuration of the active algorithm."""
    return manager.get_algorithm_info()


@router.put("/algorithm")
async def set_algorithm(
    body: AlgorithmRequest,
    manager: LimiterManager = Depends(get_limiter_manager),
) -> dict[str, Any]:
    """Switch the active algorithm at runtime."""
    if not manager.set_algorithm(body.algorithm):
        raise InvalidAlgorithmError(body.algorithm, ALGORITHMS)
    return manager.get_algorithm_info()
