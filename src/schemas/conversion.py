"""
Conversion schemas.

Amounts on a single record are always returned, whatever the status.
counts_toward_totals tells clients which records are binding so
unapproved figures can be shown apart from approved ones.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from src.models.conversion import ConversionStatus

# Read-time only, never stored
_PROGRESS = {
    ConversionStatus.PENDING: 33,
    ConversionStatus.RECOMMENDED: 66,
    ConversionStatus.APPROVED: 100,
    ConversionStatus.REJECTED: 0,
}


class ConversionSubmitRequest(BaseModel):
    """Submit a won deal. Rate defaults to the rep's own rate."""

    lead_id: str = Field(..., min_length=1, max_length=64)
    revenue_amount: Decimal
    commission_rate: Optional[Decimal] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)
    notes: Optional[str] = Field(None, max_length=2000)
    conversion_date: Optional[date] = None


class WorkflowNotesRequest(BaseModel):
    """Recommend or approve."""

    notes: Optional[str] = Field(None, max_length=2000)


class ConversionRejectRequest(BaseModel):
    # Emptiness is checked by the workflow so it reports the same error kind
    rejection_reason: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)


class ConversionAmendRequest(BaseModel):
    revenue_amount: Decimal
    commission_rate: Decimal
    notes: Optional[str] = Field(None, max_length=2000)


class AppliedDeductionResponse(BaseModel):
    label: str
    percentage: Decimal
    amount: Decimal


class ConversionResponse(BaseModel):
    """Full conversion record with derived workflow fields."""

    id: str
    lead_id: str
    rep_id: int
    revenue_amount: Decimal
    currency: str
    commission_rate: Decimal
    deductions_applied: List[AppliedDeductionResponse] = []
    commissionable_amount: Decimal
    commission_amount: Decimal
    conversion_date: date
    notes: Optional[str] = None

    status: ConversionStatus
    submitted_by: Optional[int] = None
    submitted_at: Optional[datetime] = None
    recommended_by: Optional[int] = None
    recommended_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    workflow_notes: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def rejected_by(self) -> Optional[int]:
        """The rejecting actor is stored in approved_by."""
        if self.status == ConversionStatus.REJECTED:
            return self.approved_by
        return None

    @computed_field
    @property
    def counts_toward_totals(self) -> bool:
        return self.status == ConversionStatus.APPROVED

    @computed_field
    @property
    def workflow_progress(self) -> int:
        """Percent of the approval path completed."""
        return _PROGRESS[self.status]


class ConversionListResponse(BaseModel):
    items: List[ConversionResponse]
    total: int


class PendingCountResponse(BaseModel):
    count: int
