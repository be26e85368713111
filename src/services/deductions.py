"""
Deduction schedule configuration.

The workflow only reads a snapshot of the active schedule; writes happen
through the admin API.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import DeductionRule
from src.services.commission import Deduction, validate_deductions
from src.services.errors import RecordNotFoundError

logger = logging.getLogger(__name__)


async def load_deduction_schedule(db: AsyncSession) -> List[Deduction]:
    """Active deductions in the order they are applied."""
    result = await db.execute(
        select(DeductionRule)
        .where(DeductionRule.is_active.is_(True))
        .order_by(DeductionRule.position, DeductionRule.id)
    )
    return list(validate_deductions(result.scalars().all()))


async def list_deduction_rules(db: AsyncSession, include_inactive: bool = True) -> List[DeductionRule]:
    query = select(DeductionRule).order_by(DeductionRule.position, DeductionRule.id)
    if not include_inactive:
        query = query.where(DeductionRule.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_deduction_rule(
    db: AsyncSession,
    label: str,
    percentage: Decimal,
    created_by: Optional[int] = None,
    position: Optional[int] = None,
    is_active: bool = True,
) -> DeductionRule:
    """Add a rule at the end of the schedule unless a position is given."""
    (checked,) = validate_deductions([Deduction(label=label, percentage=percentage)])

    if position is None:
        existing = await list_deduction_rules(db)
        position = (max(r.position for r in existing) + 1) if existing else 0

    rule = DeductionRule(
        label=checked.label,
        percentage=checked.percentage,
        position=position,
        is_active=is_active,
        created_by=created_by,
    )
    db.add(rule)
    await db.flush()
    logger.info(f"Deduction rule created: {rule.label} {rule.percentage}% at position {position}")
    return rule


async def update_deduction_rule(db: AsyncSession, rule_id: int, **changes) -> DeductionRule:
    rule = await db.get(DeductionRule, rule_id)
    if not rule:
        raise RecordNotFoundError(f"Deduction {rule_id} not found")

    label = changes.get("label", rule.label)
    percentage = changes.get("percentage", rule.percentage)
    (checked,) = validate_deductions([Deduction(label=label, percentage=percentage)])

    rule.label = checked.label
    rule.percentage = checked.percentage
    if changes.get("position") is not None:
        rule.position = changes["position"]
    if changes.get("is_active") is not None:
        rule.is_active = changes["is_active"]

    await db.flush()
    return rule
