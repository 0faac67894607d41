"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.utils.errors import NotFoundError, StateError

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

GENERATION_RATE_LIMIT = os.getenv("GENERATION_RATE_LIMIT", "30/minute")


# ---------------------------------------------------------------------------
# Shared error mapping
# ---------------------------------------------------------------------------
def domain_error_response(e: Exception, action: str) -> HTTPException:
    """
    Translate a service exception into an HTTPException.

    NotFoundError -> 404, StateError -> 409, any other ValueError
    (ValidationError included) -> 400, everything else -> 500.
    """
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=f"Error {action}: {str(e)}")


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from backend.api.routes.pairings import router as pairings_router  # noqa: E402
from backend.api.routes.players import router as players_router  # noqa: E402
from backend.api.routes.quick_play import router as quick_play_router  # noqa: E402
from backend.api.routes.box_leagues import router as box_leagues_router  # noqa: E402
from backend.api.routes.health import router as health_router  # noqa: E402

router = APIRouter()
router.include_router(pairings_router)
router.include_router(players_router)
router.include_router(quick_play_router)
router.include_router(box_leagues_router)
router.include_router(health_router)
