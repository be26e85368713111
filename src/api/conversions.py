"""
Conversion workflow endpoints.

Handlers only translate HTTP to workflow calls. Capability and state
checks live in the workflow service; its errors are mapped to responses
by the exception handlers in main.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import get_current_user
from src.auth.permissions import Capabilities
from src.db import get_db
from src.models import User
from src.schemas.conversion import (
    ConversionAmendRequest,
    ConversionListResponse,
    ConversionRejectRequest,
    ConversionResponse,
    ConversionSubmitRequest,
    PendingCountResponse,
    WorkflowNotesRequest,
)
from src.services import workflow
from src.services.conversion_store import (
    count_awaiting_review,
    count_visible_conversions,
    list_visible_conversions,
)
from src.services.errors import RecordNotFoundError
from src.utils.audit import get_client_ip

router = APIRouter(prefix="/conversions", tags=["Conversions"])


@router.get("", response_model=ConversionListResponse)
async def list_conversions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Conversions the current user works with, newest first."""
    records = await list_visible_conversions(db, current_user, limit=limit, offset=offset)
    return ConversionListResponse(
        items=[ConversionResponse.model_validate(r) for r in records],
        total=await count_visible_conversions(db, current_user),
    )


@router.get("/pending-count", response_model=PendingCountResponse)
async def pending_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Badge count: conversions waiting for this user's role."""
    return PendingCountResponse(count=await count_awaiting_review(db, current_user))


@router.post("", response_model=ConversionResponse, status_code=status.HTTP_201_CREATED)
async def submit(
    request: Request,
    data: ConversionSubmitRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Submit a conversion as the current user."""
    record = await workflow.submit_conversion(
        db,
        rep_id=current_user.id,
        lead_id=data.lead_id,
        revenue=data.revenue_amount,
        rate=data.commission_rate,
        currency=data.currency,
        notes=data.notes,
        conversion_date=data.conversion_date,
        ip_address=get_client_ip(request),
    )
    return ConversionResponse.model_validate(record)


@router.get("/{conversion_id}", response_model=ConversionResponse)
async def get_conversion(
    conversion_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Read one conversion.

    Reps may only read their own. Amounts are returned for any status;
    counts_toward_totals is false until approval.
    """
    record = await workflow.get_conversion(db, conversion_id)
    if record.rep_id != current_user.id and not Capabilities.for_role(current_user.role).can_review:
        raise RecordNotFoundError(f"Conversion {conversion_id} not found")
    return ConversionResponse.model_validate(record)


@router.post("/{conversion_id}/recommend", response_model=ConversionResponse)
async def recommend(
    request: Request,
    conversion_id: str,
    data: Optional[WorkflowNotesRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await workflow.recommend_conversion(
        db, current_user.id, conversion_id, notes=data.notes if data else None, ip_address=get_client_ip(request),
    )
    return ConversionResponse.model_validate(record)


@router.post("/{conversion_id}/approve", response_model=ConversionResponse)
async def approve(
    request: Request,
    conversion_id: str,
    data: Optional[WorkflowNotesRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await workflow.approve_conversion(
        db, current_user.id, conversion_id, notes=data.notes if data else None, ip_address=get_client_ip(request),
    )
    return ConversionResponse.model_validate(record)


@router.post("/{conversion_id}/reject", response_model=ConversionResponse)
async def reject(
    request: Request,
    conversion_id: str,
    data: ConversionRejectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await workflow.reject_conversion(
        db,
        current_user.id,
        conversion_id,
        reason=data.rejection_reason,
        notes=data.notes,
        ip_address=get_client_ip(request),
    )
    return ConversionResponse.model_validate(record)


@router.post("/{conversion_id}/amend", response_model=ConversionResponse)
async def amend(
    request: Request,
    conversion_id: str,
    data: ConversionAmendRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = await workflow.amend_conversion(
        db,
        current_user.id,
        conversion_id,
        new_revenue=data.revenue_amount,
        new_rate=data.commission_rate,
        notes=data.notes,
        ip_address=get_client_ip(request),
    )
    return ConversionResponse.model_validate(record)
