"""Player route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import domain_error_response
from backend.database.db import get_db_session
from backend.models.schemas import PlayerCreate, PlayerResponse
from backend.services import data_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/players", response_model=PlayerResponse)
async def create_player(payload: PlayerCreate, session: AsyncSession = Depends(get_db_session)):
    """Create a player (rating defaults to 3.5)."""
    try:
        return await data_service.create_player(session, payload.full_name, payload.rating)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "creating player")


@router.get("/api/players/{player_id}", response_model=PlayerResponse)
async def get_player(player_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await data_service.get_player(session, player_id)
    except HTTPException:
        raise
    except Exception as e:
        raise domain_error_response(e, "getting player")
