"""
Commission calculation with sequential deductions.

Rules:
- Deductions apply in declared order, each on the balance left by the
  previous ones (5% then 2% of 1000 -> 50.00, then 19.00, leaving 931.00)
- Commission is the rate applied to what remains (the commissionable amount)
- Money is rounded half-up to cents once per derived value, never on the
  running balance
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Protocol, Tuple

from src.services.errors import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
MIN_PERCENT = Decimal("0")
MAX_PERCENT = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class DeductionLike(Protocol):
    label: str
    percentage: Decimal


@dataclass(frozen=True)
class Deduction:
    """A deduction schedule entry as the calculator sees it."""

    label: str
    percentage: Decimal


@dataclass(frozen=True)
class AppliedDeduction:
    """Frozen record of one deduction as it was applied to a conversion."""

    label: str
    percentage: Decimal
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "percentage": str(self.percentage),
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppliedDeduction":
        try:
            return cls(
                label=str(data["label"]),
                percentage=Decimal(str(data["percentage"])),
                amount=Decimal(str(data["amount"])),
            )
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValidationError(f"Malformed deduction snapshot: {data!r}") from e


@dataclass(frozen=True)
class CommissionBreakdown:
    """Output of calculate_commission."""

    commissionable: Decimal
    final_commission: Decimal
    applied: Tuple[AppliedDeduction, ...] = ()

    def applied_as_json(self) -> list:
        return [d.to_dict() for d in self.applied]


def _to_decimal(value, field: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"{field} must be a number, got: {value!r}", field=field) from e
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number, got: {value!r}", field=field)
    return result


def _check_places(value: Decimal, field: str, label: str) -> None:
    # Stored as NUMERIC(.., 2); extra places would be rounded away on save
    if value.normalize().as_tuple().exponent < -2:
        raise ValidationError(
            f"{label} allows at most 2 decimal places, got: {value}",
            field=field,
        )


def validate_revenue(revenue) -> Decimal:
    amount = _to_decimal(revenue, "revenue_amount")
    if amount < 0:
        raise ValidationError(
            f"revenue_amount cannot be negative, got: {amount}",
            field="revenue_amount",
        )
    _check_places(amount, "revenue_amount", "revenue_amount")
    return amount


def validate_rate(rate) -> Decimal:
    value = _to_decimal(rate, "commission_rate")
    if not (MIN_PERCENT <= value <= MAX_PERCENT):
        raise ValidationError(
            f"commission_rate must be between 0 and 100, got: {value}",
            field="commission_rate",
        )
    _check_places(value, "commission_rate", "commission_rate")
    return value


def validate_deductions(deductions: Iterable[DeductionLike]) -> Tuple[Deduction, ...]:
    """Snapshot a deduction schedule, rejecting malformed entries."""
    snapshot = []
    for i, rule in enumerate(deductions):
        label = getattr(rule, "label", None)
        if not label or not str(label).strip():
            raise ValidationError(f"Deduction {i} has no label", field="deductions")
        percentage = _to_decimal(getattr(rule, "percentage", None), "deductions")
        if not (MIN_PERCENT <= percentage <= MAX_PERCENT):
            raise ValidationError(
                f"Deduction '{label}' percentage must be between 0 and 100, got: {percentage}",
                field="deductions",
            )
        _check_places(percentage, "deductions", f"Deduction '{label}' percentage")
        snapshot.append(Deduction(label=str(label).strip(), percentage=percentage))
    return tuple(snapshot)


def calculate_commission(
    revenue,
    rate,
    deductions: Iterable[DeductionLike] = (),
) -> CommissionBreakdown:
    """Apply the deduction schedule to revenue and compute the commission.

    Pure and deterministic: the same inputs always produce the same
    breakdown, which is what makes the persisted snapshot reproducible.

    Args:
        revenue: Gross deal value, must be >= 0
        rate: Commission percentage, 0-100
        deductions: Ordered schedule of objects with label and percentage

    Returns:
        CommissionBreakdown with commissionable amount, final commission
        and the applied deductions in order

    Raises:
        ValidationError: on negative revenue, out-of-range rate or a
            malformed deduction
    """
    revenue = validate_revenue(revenue)
    rate = validate_rate(rate)
    schedule = validate_deductions(deductions)

    remaining = revenue
    applied = []
    for rule in schedule:
        amount = remaining * rule.percentage / HUNDRED
        applied.append(
            AppliedDeduction(
                label=rule.label,
                percentage=rule.percentage,
                amount=quantize_money(amount),
            )
        )
        remaining -= amount

    commissionable = quantize_money(remaining)
    final_commission = quantize_money(commissionable * rate / HUNDRED)

    return CommissionBreakdown(
        commissionable=commissionable,
        final_commission=final_commission,
        applied=tuple(applied),
    )
