"""Health check route handler."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.db import get_db_session

router = APIRouter()


@router.get("/api/health")
async def health_check(session: AsyncSession = Depends(get_db_session)):
    """
    Health check endpoint.

    Returns:
        dict: Service status
    """
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "healthy", "message": "API is running", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "unavailable", "message": f"Error: {str(e)}"}
