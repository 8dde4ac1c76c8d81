"""
Health check endpoint.
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db, ping_db
from services import reaper_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check — verifies database connectivity and reports the reaper."""
    try:
        await ping_db(db)
        return {
            "status": "healthy",
            "database_connected": True,
            "reaper": reaper_service.get_status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database_connected": False,
                "error": "database unavailable",
            },
        )
