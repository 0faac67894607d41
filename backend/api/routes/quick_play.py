"""Quick play tournament route handlers."""

import logging
import random

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.pairing_dependencies import get_pairing_rng, get_rotation_cache
from backend.api.routes import GENERATION_RATE_LIMIT, domain_error_response, limiter
from backend.database.db import get_db_session
from backend.models.schemas import MatchResultRequest, QuickPlayCreate
from backend.services import data_service
from backend.services.pairing_service import RotationCache

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/quick-play")
@limiter.limit(GENERATION_RATE_LIMIT)
async def create_quick_play(
    request: Request,
    payload: QuickPlayCreate,
    rng: random.Random = Depends(get_pairing_rng),
    cache: RotationCache = Depends(get_rotation_cache),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a quick play tournament; rounds 1..max_rounds (default 1) are generated immediately."""
    try:
        return await data_service.create_quick_play_tournament(
            session,
            name=payload.name,
            match_format=payload.format,
            player_ids=payload.player_ids,
            available_courts=payload.available_courts,
            max_rounds=payload.max_rounds,
            rng=rng,
            cache=cache,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "creating quick play tournament")


@router.get("/api/quick-play/{tournament_id}")
async def get_quick_play(tournament_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_quick_play_tournament(session, tournament_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting quick play tournament")


@router.post("/api/quick-play/{tournament_id}/rounds")
@limiter.limit(GENERATION_RATE_LIMIT)
async def add_round(
    request: Request,
    tournament_id: int,
    rng: random.Random = Depends(get_pairing_rng),
    cache: RotationCache = Depends(get_rotation_cache),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Generate the next round from the tournament's match history.

    Rounds for the same tournament should not be requested concurrently.
    """
    try:
        return await data_service.add_quick_play_round(session, tournament_id, rng=rng, cache=cache)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "adding round")


@router.delete("/api/quick-play/{tournament_id}/rounds/{round_number}")
async def delete_round(tournament_id: int, round_number: int, session: AsyncSession = Depends(get_db_session)):
    """Delete a round nobody has started. The only round cannot be deleted."""
    try:
        return await data_service.delete_quick_play_round(session, tournament_id, round_number)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "deleting round")


@router.post("/api/quick-play/matches/{match_id}/start")
async def start_match(match_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.start_quick_play_match(session, match_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "starting match")


@router.post("/api/quick-play/matches/{match_id}/result")
async def record_result(
    match_id: int, payload: MatchResultRequest, session: AsyncSession = Depends(get_db_session)
):
    """Record a score; ratings and player totals update in the same transaction."""
    try:
        return await data_service.record_quick_play_result(
            session, match_id, payload.team1_score, payload.team2_score
        )
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "recording result")
