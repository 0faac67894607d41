"""
FastAPI dependencies for the pairing engine: the random source and the
application-wide rotation cache.
"""

import os
import random

from fastapi import Request

from backend.services.pairing_service import RotationCache


def get_pairing_rng() -> random.Random:
    """
    Random source for one request.

    Seeded from PAIRING_RANDOM_SEED when set so rounds are reproducible.
    """
    seed = os.getenv("PAIRING_RANDOM_SEED")
    if seed:
        return random.Random(int(seed))
    return random.Random()


def get_rotation_cache(request: Request) -> RotationCache:
    """The rotation cache owned by the running app (created on first use)."""
    cache = getattr(request.app.state, "rotation_cache", None)
    if cache is None:
        cache = RotationCache()
        request.app.state.rotation_cache = cache
    return cache
