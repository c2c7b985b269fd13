from fastapi import Request

from limitgate.app.limiter.manager import LimiterManager


def get_limiter_manager(request: Request) -> LimiterManager:
    """Return the limiter manager owned by the running application."""
    return request.app.state.limiter_manager
