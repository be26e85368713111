"""
Report endpoints: approved-only totals in the viewer's base currency.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import get_current_user
from src.auth.permissions import Capabilities
from src.db import get_db
from src.models import User, UserRole
from src.schemas.report import TotalsResponse
from src.services.aggregation import approved_totals
from src.services.currency import CurrencyNormalizer, get_currency_normalizer, get_user_base_currency

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/totals", response_model=TotalsResponse)
async def totals(
    rep_id: Optional[int] = Query(None, description="Reviewers only: totals for one rep"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    normalizer: CurrencyNormalizer = Depends(get_currency_normalizer),
):
    """
    Revenue and commission over approved conversions.

    Reps always get their own totals. Reviewers get everyone's unless
    rep_id narrows it. Amounts are in the user's base currency unless
    another currency is requested.
    """
    if current_user.role == UserRole.REP:
        if rep_id is not None and rep_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Reps can only see their own totals",
            )
        rep_id = current_user.id
    elif not Capabilities.for_role(current_user.role).can_review:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    target = currency or await get_user_base_currency(db, current_user.id)
    result = await approved_totals(
        db,
        normalizer,
        target,
        rep_id=rep_id,
        start_date=start_date,
        end_date=end_date,
    )
    return TotalsResponse.model_validate(result)
