"""
Currency endpoints backed by the normalizer.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from src.auth.dependencies import get_current_user
from src.models import User
from src.schemas.report import ConvertResponse, RatesResponse
from src.services.currency import CurrencyNormalizer, get_currency_normalizer

router = APIRouter(prefix="/currency", tags=["Currency"])


@router.get("/rates/{base}", response_model=RatesResponse)
async def rates(
    base: str,
    current_user: User = Depends(get_current_user),
    normalizer: CurrencyNormalizer = Depends(get_currency_normalizer),
):
    rate_set = await normalizer.rates(base)
    return RatesResponse(
        base=rate_set.base,
        rates=dict(rate_set.rates),
        fetched_at=rate_set.fetched_at,
        is_estimated=rate_set.is_fallback,
    )


@router.get("/convert", response_model=ConvertResponse)
async def convert(
    amount: Decimal = Query(...),
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query("USD", alias="to"),
    current_user: User = Depends(get_current_user),
    normalizer: CurrencyNormalizer = Depends(get_currency_normalizer),
):
    result = await normalizer.convert(amount, from_currency, to_currency)
    return ConvertResponse.model_validate(result)
