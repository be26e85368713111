"""
Database models for SalesTrack.

All models are exported here for convenient imports:
    from src.models import User, ConversionRecord, DeductionRule, etc.
"""

from src.models.audit import AuditAction, AuditLog
from src.models.base import Base, TimestampMixin
from src.models.conversion import ConversionRecord, ConversionStatus
from src.models.currency_cache import CurrencyCacheEntry
from src.models.deduction import DeductionRule
from src.models.user import User, UserRole

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # User
    "User",
    "UserRole",
    # Conversion
    "ConversionRecord",
    "ConversionStatus",
    # Deduction
    "DeductionRule",
    # Currency
    "CurrencyCacheEntry",
    # Audit
    "AuditLog",
    "AuditAction",
]
