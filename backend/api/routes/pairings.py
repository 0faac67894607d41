"""Pure engine endpoints: round generation, previews, box schedule and rating math."""

import logging
import random
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from backend.api.pairing_dependencies import get_pairing_rng, get_rotation_cache
from backend.api.routes import GENERATION_RATE_LIMIT, domain_error_response, limiter
from backend.models.schemas import (
    BoxScheduleMatch,
    BoxScheduleRequest,
    GenerateRoundRequest,
    MaxRoundsResponse,
    RatingRequest,
    RatingResponse,
    RoundResponse,
)
from backend.services import box_league_service, rating_service, round_service
from backend.services.pairing_service import RotationCache, calculate_max_unique_rounds

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/pairings/generate-round", response_model=RoundResponse)
@limiter.limit(GENERATION_RATE_LIMIT)
async def generate_round(
    request: Request,
    payload: GenerateRoundRequest,
    rng: random.Random = Depends(get_pairing_rng),
    cache: RotationCache = Depends(get_rotation_cache),
):
    """
    Generate one round for a roster from its match history.

    Nothing is stored; the caller persists the returned matches.
    """
    try:
        result = round_service.generate_round(
            payload.roster,
            payload.format,
            payload.courts,
            existing_matches=[match.model_dump() for match in payload.existing_matches],
            round_number=payload.round_number,
            starting_match_number=payload.starting_match_number,
            rng=rng,
            cache=cache,
        )
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "generating round")


@router.get("/api/pairings/max-rounds", response_model=MaxRoundsResponse)
async def max_rounds(
    player_count: int = Query(..., ge=0),
    format: str = Query(..., pattern="^(singles|doubles)$"),
):
    """Number of distinct rounds a roster supports before repeating (preview only)."""
    try:
        return {
            "player_count": player_count,
            "format": format,
            "max_unique_rounds": calculate_max_unique_rounds(player_count, format),
        }
    except Exception as e:
        raise domain_error_response(e, "calculating max rounds")


@router.post("/api/pairings/box-schedule", response_model=List[BoxScheduleMatch])
async def box_schedule(payload: BoxScheduleRequest):
    """The three fixed matches for a box of four players."""
    try:
        pairings = box_league_service.generate_box_match_pairings(payload.player_ids)
        return [pairing.to_dict() for pairing in pairings]
    except Exception as e:
        raise domain_error_response(e, "generating box schedule")


@router.post("/api/ratings/calculate", response_model=RatingResponse)
async def calculate_ratings(payload: RatingRequest):
    """Rating changes for a match result. Ties are rejected."""
    try:
        changes = rating_service.compute_rating_changes(
            payload.team1_ids,
            payload.team1_score,
            payload.team2_ids,
            payload.team2_score,
            payload.pre_match_ratings,
        )
        return {
            "rating_changes": {player_id: change.to_dict() for player_id, change in changes.items()}
        }
    except Exception as e:
        raise domain_error_response(e, "calculating ratings")
