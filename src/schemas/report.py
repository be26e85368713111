"""Totals and currency schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict

from pydantic import BaseModel


class TotalsResponse(BaseModel):
    """Approved-only totals. is_estimated marks fallback or unconverted amounts."""

    revenue: Decimal
    commission: Decimal
    currency: str
    count: int
    is_estimated: bool = False

    model_config = {"from_attributes": True}


class RatesResponse(BaseModel):
    base: str
    rates: Dict[str, Decimal]
    fetched_at: datetime
    is_estimated: bool = False


class ConvertResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    is_estimated: bool = False

    model_config = {"from_attributes": True}
