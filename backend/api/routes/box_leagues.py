"""Box league route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import domain_error_response
from backend.database.db import get_db_session
from backend.models.schemas import (
    BoxLeagueCreate,
    BoxLeaguePlayerAdd,
    BoxLeagueStatusUpdate,
    MatchResultRequest,
    PlayerSwapRequest,
)
from backend.services import data_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/box-leagues")
async def create_box_league(payload: BoxLeagueCreate, session: AsyncSession = Depends(get_db_session)):
    """
    Create a box league.

    Players are seeded into boxes of four in the order given, first four in
    the top box.
    """
    try:
        return await data_service.create_box_league(
            session,
            name=payload.name,
            player_ids=payload.player_ids,
            rounds_per_cycle=payload.rounds_per_cycle,
            new_player_entry_box=payload.new_player_entry_box,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "creating box league")


@router.get("/api/box-leagues/{league_id}")
async def get_box_league(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_box_league(session, league_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting box league")


@router.patch("/api/box-leagues/{league_id}/status")
async def update_status(
    league_id: int, payload: BoxLeagueStatusUpdate, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await data_service.update_box_league_status(session, league_id, payload.status)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "updating box league status")


@router.post("/api/box-leagues/{league_id}/players")
async def add_player(
    league_id: int, payload: BoxLeaguePlayerAdd, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await data_service.add_player_to_box_league(session, league_id, payload.player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "adding player")


@router.delete("/api/box-leagues/{league_id}/players/{player_id}")
async def remove_player(league_id: int, player_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.remove_player_from_box_league(session, league_id, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "removing player")


@router.get("/api/box-leagues/{league_id}/players/{player_id}/stats")
async def get_player_stats(league_id: int, player_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_player_box_stats(session, league_id, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting player stats")


@router.post("/api/box-leagues/{league_id}/swap")
async def swap_players(
    league_id: int, payload: PlayerSwapRequest, session: AsyncSession = Depends(get_db_session)
):
    """Swap two players between boxes. Blocked while either box has open matches."""
    try:
        return await data_service.swap_players(session, league_id, payload.player_a_id, payload.player_b_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "swapping players")


@router.post("/api/box-leagues/{league_id}/rounds")
async def create_round(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.create_box_league_round(session, league_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "creating round")


@router.get("/api/box-leagues/{league_id}/rounds")
async def list_rounds(
    league_id: int,
    cycle: Optional[int] = Query(None, ge=1),
    session: AsyncSession = Depends(get_db_session),
):
    """List rounds with their matches, optionally for a single cycle."""
    try:
        return await data_service.list_box_league_rounds(session, league_id, cycle_number=cycle)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "listing rounds")


@router.post("/api/box-leagues/matches/{match_id}/result")
async def record_result(
    match_id: int, payload: MatchResultRequest, session: AsyncSession = Depends(get_db_session)
):
    try:
        return await data_service.record_box_match_result(
            session, match_id, payload.team1_score, payload.team2_score
        )
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "recording result")


@router.get("/api/box-leagues/{league_id}/standings")
async def get_standings(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_box_standings(session, league_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting standings")


@router.get("/api/box-leagues/{league_id}/cycle-status")
async def get_cycle_status(league_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_cycle_completion_status(session, league_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting cycle status")


@router.post("/api/box-leagues/{league_id}/promotion-relegation")
async def promotion_relegation(
    league_id: int,
    preview: bool = Query(False),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Run promotion/relegation for a completed cycle.

    With preview=true the moves are computed but nothing is saved.
    """
    try:
        return await data_service.run_promotion_relegation(session, league_id, preview=preview)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "running promotion/relegation")
