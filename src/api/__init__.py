"""API router aggregation."""

from fastapi import APIRouter

from src.api.auth import router as auth_router
from src.api.conversions import router as conversions_router
from src.api.currency import router as currency_router
from src.api.deductions import router as deductions_router
from src.api.health import router as health_router
from src.api.reports import router as reports_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(auth_router)
api_router.include_router(conversions_router)
api_router.include_router(reports_router)
api_router.include_router(currency_router)
api_router.include_router(deductions_router)

__all__ = ["api_router"]
