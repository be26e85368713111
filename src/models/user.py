"""
User model for authentication and role management.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from src.models.audit import AuditLog
    from src.models.conversion import ConversionRecord


class UserRole(str, Enum):
    """User roles for access control."""
    REP = "rep"
    MANAGER = "manager"
    DIRECTOR = "director"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """
    User account model.

    - rep: submits conversions, sees only their own
    - manager: recommends pending conversions
    - director: approves or rejects recommended conversions
    - admin: everything above, plus deduction configuration
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        SQLAlchemyEnum(
            UserRole,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=UserRole.REP,
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    last_active_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Display currency for totals (ISO 4217)
    preferred_currency: Mapped[Optional[str]] = mapped_column(
        String(3),
        nullable=True,
        comment="Base currency all totals are normalized into",
    )
    # Percentage, e.g. 12.5 = 12.5%
    default_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Rate prefilled when the rep submits without one",
    )

    # Relationships
    conversions: Mapped[List["ConversionRecord"]] = relationship(
        "ConversionRecord",
        back_populates="rep",
        foreign_keys="ConversionRecord.rep_id",
    )
    audit_logs: Mapped[List["AuditLog"]] = relationship(
        "AuditLog",
        back_populates="user",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role={self.role})>"
