"""
ConversionRecord model: one won deal going through commission approval.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from src.models.user import User


class ConversionStatus(str, Enum):
    """Workflow status. The only field that decides what a record counts for."""
    PENDING = "pending"              # Submitted, waiting for a manager
    RECOMMENDED = "recommended"      # Manager signed off, waiting for a director
    APPROVED = "approved"            # Binding, counts toward totals
    REJECTED = "rejected"            # Sent back, can be amended


def generate_conversion_id() -> str:
    return str(uuid.uuid4())


class ConversionRecord(Base, TimestampMixin):
    """
    A sale in review.

    Monetary fields are derived by the commission calculator and are never
    written by hand. Status changes only go through the workflow service,
    which uses a conditional update on the expected status.

    The approved_by/approved_at pair is also used for the rejecting actor.
    """

    __tablename__ = "conversions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_conversion_id,
    )

    # Immutable references
    lead_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    rep_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    # Deal values
    revenue_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Percentage 0-100",
    )
    deductions_applied: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Frozen [{label, percentage, amount}] snapshot, decimals as strings",
    )
    commissionable_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
    )
    conversion_date: Mapped[date] = mapped_column(
        Date,
        default=date.today,
        nullable=False,
        index=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Submitter's note about the deal",
    )

    # Status
    status: Mapped[ConversionStatus] = mapped_column(
        SQLAlchemyEnum(
            ConversionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ConversionStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Workflow audit trail
    submitted_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    recommended_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    recommended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    approved_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        comment="Approver, or rejecter when status is rejected",
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    workflow_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Relationships
    rep: Mapped["User"] = relationship(
        "User",
        back_populates="conversions",
        foreign_keys=[rep_id],
    )

    def __repr__(self) -> str:
        return (
            f"<ConversionRecord(id={self.id}, rep_id={self.rep_id}, "
            f"status={self.status}, revenue={self.revenue_amount} {self.currency})>"
        )
