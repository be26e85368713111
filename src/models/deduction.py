"""
DeductionRule model: organization-wide deductions applied before commission.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class DeductionRule(Base, TimestampMixin):
    """
    One entry of the deduction schedule (e.g. "Tax 5%", "Admin Fee 2%").

    Active rules are applied in (position, id) order, each on the balance left
    by the previous ones. Conversions store a frozen copy of what was applied,
    so editing a rule never changes historical commissions.
    """

    __tablename__ = "deductions"

    id: Mapped[int] = mapped_column(primary_key=True)
    label: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Percentage 0-100 of the remaining balance",
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<DeductionRule(id={self.id}, label='{self.label}', percentage={self.percentage})>"
