"""
Deduction schedule endpoints.

Everyone can read the schedule; only admins change it. Changes apply to
conversions submitted or amended afterwards, never to stored snapshots.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import get_current_user, require_admin
from src.db import get_db
from src.models import AuditAction, User
from src.schemas.deduction import DeductionCreate, DeductionResponse, DeductionUpdate
from src.services.deductions import create_deduction_rule, list_deduction_rules, update_deduction_rule
from src.utils.audit import get_client_ip, log_action

router = APIRouter(prefix="/deductions", tags=["Deductions"])


@router.get("", response_model=List[DeductionResponse])
async def list_deductions(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Deduction schedule in application order."""
    return await list_deduction_rules(db, include_inactive=include_inactive)


@router.post("", response_model=DeductionResponse, status_code=status.HTTP_201_CREATED)
async def create_deduction(
    request: Request,
    data: DeductionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    rule = await create_deduction_rule(
        db,
        label=data.label,
        percentage=data.percentage,
        created_by=current_user.id,
        position=data.position,
        is_active=data.is_active,
    )

    await log_action(
        db=db,
        user_id=current_user.id,
        action=AuditAction.CREATE_DEDUCTION,
        target_type="deduction",
        target_id=rule.id,
        action_metadata={"label": rule.label, "percentage": str(rule.percentage)},
        ip_address=get_client_ip(request),
    )

    await db.commit()
    await db.refresh(rule)
    return rule


@router.patch("/{deduction_id}", response_model=DeductionResponse)
async def update_deduction(
    request: Request,
    deduction_id: int,
    data: DeductionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    changes = data.model_dump(exclude_unset=True)
    rule = await update_deduction_rule(db, deduction_id, **changes)

    await log_action(
        db=db,
        user_id=current_user.id,
        action=AuditAction.UPDATE_DEDUCTION,
        target_type="deduction",
        target_id=rule.id,
        action_metadata={k: str(v) for k, v in changes.items()},
        ip_address=get_client_ip(request),
    )

    await db.commit()
    await db.refresh(rule)
    return rule
