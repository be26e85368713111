"""Deduction schedule schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class DeductionCreate(BaseModel):
    label: str = Field(..., min_length=1, max_length=100)
    percentage: Decimal = Field(..., ge=0, le=100)
    position: Optional[int] = Field(None, ge=0)
    is_active: bool = True


class DeductionUpdate(BaseModel):
    label: Optional[str] = Field(None, min_length=1, max_length=100)
    percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    position: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class DeductionResponse(BaseModel):
    id: int
    label: str
    percentage: Decimal
    position: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
