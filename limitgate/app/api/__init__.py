"""API endpoints package for the rate limiting service."""

from limitgate.app.api.dashboard import router as dashboard_router

__all__ = [
    "dashboard_router",
]
