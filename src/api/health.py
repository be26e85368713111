"""
Health endpoints for the SalesTrack API.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db import get_db
from src.scheduler.jobs import scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


def _rate_refresh_state() -> str:
    if not settings.scheduler_enabled:
        return "disabled"
    return "running" if scheduler.running else "stopped"


@router.get("")
async def health_check():
    return {"status": "healthy", "service": "salestrack"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Ready once the conversion database answers.

    The rate refresh job state is reported but does not gate readiness:
    conversions fall back to cached or static rates without it.
    """
    rate_refresh = _rate_refresh_state()
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "database": "unavailable",
                "rate_refresh": rate_refresh,
            },
        )

    return {
        "status": "ready",
        "database": "connected",
        "rate_refresh": rate_refresh,
    }


@router.get("/live")
async def liveness_check():
    """Process is up; no database round trip."""
    return {"status": "alive"}
