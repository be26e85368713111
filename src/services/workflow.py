"""
Conversion approval workflow.

State machine:
    submit               -> pending
    pending     --recommend--> recommended   (manager, admin)
    recommended --approve-->   approved      (director, admin)
    pending/recommended --reject--> rejected (director, admin)
    rejected    --amend-->     pending       (owning rep, any reviewer)

Every transition is one conditional UPDATE guarded by the expected status,
written in the same transaction as its audit row. If another request moved
the record first, nothing is written and StateConflictError is raised.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.permissions import Capabilities, resolve_actor
from src.config import settings
from src.models import AuditAction, ConversionRecord, ConversionStatus, User
from src.services import conversion_store
from src.services.commission import calculate_commission, validate_rate, validate_revenue
from src.services.deductions import load_deduction_schedule
from src.services.errors import (
    AuthorizationError,
    InvalidTransitionError,
    RecordNotFoundError,
    StateConflictError,
    UnsupportedCurrencyError,
    ValidationError,
)
from src.services.fallback_rates import is_supported
from src.utils.audit import log_action

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class WorkflowAction(str, Enum):
    RECOMMEND = "recommend"
    APPROVE = "approve"
    REJECT = "reject"
    AMEND = "amend"


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    action: WorkflowAction
    from_states: FrozenSet[ConversionStatus]
    to_state: ConversionStatus
    audit_action: AuditAction
    allowed: Callable[[Capabilities, User, ConversionRecord], bool]


def _can_recommend(caps: Capabilities, actor: User, record: ConversionRecord) -> bool:
    return caps.can_recommend


def _can_approve(caps: Capabilities, actor: User, record: ConversionRecord) -> bool:
    return caps.can_approve


def _can_amend(caps: Capabilities, actor: User, record: ConversionRecord) -> bool:
    return record.rep_id == actor.id or caps.can_review


TRANSITIONS: Dict[WorkflowAction, Transition] = {
    WorkflowAction.RECOMMEND: Transition(
        action=WorkflowAction.RECOMMEND,
        from_states=frozenset({ConversionStatus.PENDING}),
        to_state=ConversionStatus.RECOMMENDED,
        audit_action=AuditAction.RECOMMEND_CONVERSION,
        allowed=_can_recommend,
    ),
    WorkflowAction.APPROVE: Transition(
        action=WorkflowAction.APPROVE,
        from_states=frozenset({ConversionStatus.RECOMMENDED}),
        to_state=ConversionStatus.APPROVED,
        audit_action=AuditAction.APPROVE_CONVERSION,
        allowed=_can_approve,
    ),
    WorkflowAction.REJECT: Transition(
        action=WorkflowAction.REJECT,
        from_states=frozenset({ConversionStatus.PENDING, ConversionStatus.RECOMMENDED}),
        to_state=ConversionStatus.REJECTED,
        audit_action=AuditAction.REJECT_CONVERSION,
        allowed=_can_approve,
    ),
    WorkflowAction.AMEND: Transition(
        action=WorkflowAction.AMEND,
        from_states=frozenset({ConversionStatus.REJECTED}),
        to_state=ConversionStatus.PENDING,
        audit_action=AuditAction.AMEND_CONVERSION,
        allowed=_can_amend,
    ),
}


def allowed_actions(actor: User, record: ConversionRecord) -> list[WorkflowAction]:
    """Transitions the actor could run on the record right now."""
    caps = Capabilities.for_role(actor.role)
    return [
        t.action
        for t in TRANSITIONS.values()
        if record.status in t.from_states and t.allowed(caps, actor, record)
    ]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    return notes or None


def validate_currency(code) -> str:
    if not isinstance(code, str) or not _CURRENCY_RE.match(code.strip().upper()):
        raise ValidationError(
            f"currency must be a 3-letter ISO 4217 code, got: {code!r}",
            field="currency",
        )
    code = code.strip().upper()
    if not is_supported(code):
        raise UnsupportedCurrencyError(f"Unsupported currency: {code}", field="currency")
    return code


def _resolve_rate(rep: User, rate) -> Decimal:
    if rate is not None:
        return validate_rate(rate)
    if rep.default_commission_rate is not None:
        return validate_rate(rep.default_commission_rate)
    return validate_rate(settings.default_commission_rate)


async def _calculate(db: AsyncSession, revenue: Decimal, rate: Decimal) -> dict:
    schedule = await load_deduction_schedule(db)
    breakdown = calculate_commission(revenue, rate, schedule)
    return {
        "revenue_amount": revenue,
        "commission_rate": rate,
        "deductions_applied": breakdown.applied_as_json(),
        "commissionable_amount": breakdown.commissionable,
        "commission_amount": breakdown.final_commission,
    }


async def get_conversion(db: AsyncSession, record_id: str) -> ConversionRecord:
    record = await conversion_store.get_record(db, record_id)
    if not record:
        raise RecordNotFoundError(f"Conversion {record_id} not found")
    return record


async def submit_conversion(
    db: AsyncSession,
    rep_id: int,
    lead_id: str,
    revenue,
    rate=None,
    currency: str = "USD",
    notes: Optional[str] = None,
    conversion_date: Optional[date] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """
    Record a won deal and compute its commission.

    The rate defaults to the rep's own rate, then the organization default.
    The active deduction schedule is read once and frozen into the record.

    Raises:
        ValidationError: bad revenue, rate, currency or lead reference
        AuthorizationError: unknown or inactive rep
    """
    if not lead_id or not str(lead_id).strip():
        raise ValidationError("lead_id is required", field="lead_id")
    revenue = validate_revenue(revenue)
    currency = validate_currency(currency)
    if rate is not None:
        rate = validate_rate(rate)

    rep = await resolve_actor(db, rep_id)
    caps = Capabilities.for_role(rep.role)
    if not caps.can_submit:
        raise AuthorizationError(f"User {rep_id} cannot submit conversions")

    rate = _resolve_rate(rep, rate)
    values = await _calculate(db, revenue, rate)
    now = _now()

    record = await conversion_store.create_record(
        db,
        lead_id=str(lead_id).strip(),
        rep_id=rep.id,
        currency=currency,
        conversion_date=conversion_date or date.today(),
        notes=_clean_notes(notes),
        status=ConversionStatus.PENDING,
        submitted_by=rep.id,
        submitted_at=now,
        **values,
    )

    await log_action(
        db=db,
        user_id=rep.id,
        action=AuditAction.SUBMIT_CONVERSION,
        target_type="conversion",
        target_id=record.id,
        action_metadata={
            "lead_id": record.lead_id,
            "revenue": str(revenue),
            "currency": currency,
            "commission": str(values["commission_amount"]),
        },
        ip_address=ip_address,
    )
    await db.commit()
    await db.refresh(record)

    logger.info(
        f"Conversion {record.id} submitted by {rep.username}: "
        f"{revenue} {currency}, commission {record.commission_amount}"
    )
    _notify(record, "awaiting manager recommendation")
    return record


async def _run_transition(
    db: AsyncSession,
    action: WorkflowAction,
    actor_id: int,
    record_id: str,
    build_values: Callable[[User, ConversionRecord], Awaitable[dict]],
    audit_metadata: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """
    Guard, conditionally update and audit one transition.

    Guards run in order: actor, record, capability, from-state. Input
    validation happens in the callers before this is reached.
    """
    transition = TRANSITIONS[action]

    actor = await resolve_actor(db, actor_id)
    record = await conversion_store.get_record(db, record_id)
    if not record:
        raise RecordNotFoundError(f"Conversion {record_id} not found")

    caps = Capabilities.for_role(actor.role)
    if not transition.allowed(caps, actor, record):
        raise AuthorizationError(
            f"{actor.role.value} {actor.username} cannot {action.value} conversion {record_id}"
        )
    if record.status not in transition.from_states:
        raise InvalidTransitionError(
            f"Cannot {action.value} a conversion that is {record.status.value}"
        )

    expected = record.status
    values = await build_values(actor, record)
    values["status"] = transition.to_state

    updated = await conversion_store.update_if_status(db, record.id, expected, values)
    if not updated:
        await db.rollback()
        raise StateConflictError(
            f"Conversion {record_id} was changed by another request; reload and retry"
        )

    await log_action(
        db=db,
        user_id=actor.id,
        action=transition.audit_action,
        target_type="conversion",
        target_id=record.id,
        action_metadata={
            "from": expected.value,
            "to": transition.to_state.value,
            **(audit_metadata or {}),
        },
        ip_address=ip_address,
    )
    await db.commit()
    await db.refresh(record)

    logger.info(
        f"Conversion {record.id}: {expected.value} -> {record.status.value} "
        f"by {actor.username} ({actor.role.value})"
    )
    return record


async def recommend_conversion(
    db: AsyncSession,
    actor_id: int,
    record_id: str,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """First-level sign-off by a manager."""
    notes = _clean_notes(notes)

    async def values(actor, record):
        return {
            "recommended_by": actor.id,
            "recommended_at": _now(),
            "workflow_notes": notes if notes is not None else record.workflow_notes,
        }

    record = await _run_transition(
        db, WorkflowAction.RECOMMEND, actor_id, record_id, values, ip_address=ip_address,
    )
    _notify(record, "awaiting director approval")
    return record


async def approve_conversion(
    db: AsyncSession,
    actor_id: int,
    record_id: str,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """Final approval. The commission becomes binding."""
    notes = _clean_notes(notes)

    async def values(actor, record):
        return {
            "approved_by": actor.id,
            "approved_at": _now(),
            "workflow_notes": notes if notes is not None else record.workflow_notes,
        }

    record = await _run_transition(
        db, WorkflowAction.APPROVE, actor_id, record_id, values, ip_address=ip_address,
    )
    _notify(record, "approved")
    return record


async def reject_conversion(
    db: AsyncSession,
    actor_id: int,
    record_id: str,
    reason: Optional[str],
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """
    Send a conversion back to the rep.

    The rejecter is stored in approved_by/approved_at.

    Raises:
        ValidationError: empty reason, checked before anything else
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("rejection_reason is required", field="rejection_reason")
    notes = _clean_notes(notes)

    async def values(actor, record):
        return {
            "approved_by": actor.id,
            "approved_at": _now(),
            "rejection_reason": reason,
            "workflow_notes": notes if notes is not None else record.workflow_notes,
        }

    record = await _run_transition(
        db,
        WorkflowAction.REJECT,
        actor_id,
        record_id,
        values,
        audit_metadata={"reason": reason},
        ip_address=ip_address,
    )
    _notify(record, f"rejected: {reason}")
    return record


async def amend_conversion(
    db: AsyncSession,
    actor_id: int,
    record_id: str,
    new_revenue,
    new_rate,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> ConversionRecord:
    """
    Correct a rejected conversion and restart the review.

    Recalculates against the current deduction schedule, clears the
    review trail and makes the amending actor the submitter.
    """
    revenue = validate_revenue(new_revenue)
    rate = validate_rate(new_rate)
    notes = _clean_notes(notes)

    async def values(actor, record):
        calculated = await _calculate(db, revenue, rate)
        return {
            **calculated,
            "submitted_by": actor.id,
            "submitted_at": _now(),
            "recommended_by": None,
            "recommended_at": None,
            "approved_by": None,
            "approved_at": None,
            "rejection_reason": None,
            "workflow_notes": notes,
        }

    record = await _run_transition(
        db,
        WorkflowAction.AMEND,
        actor_id,
        record_id,
        values,
        audit_metadata={"revenue": str(revenue), "rate": str(rate)},
        ip_address=ip_address,
    )
    _notify(record, "amended, awaiting manager recommendation")
    return record


def _notify(record: ConversionRecord, message: str) -> None:
    logger.info(f"[notify] rep {record.rep_id}: conversion {record.id} {message}")
