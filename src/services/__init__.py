"""Business logic services."""

from src.services.commission import CommissionBreakdown, calculate_commission
from src.services.errors import (
    AuthorizationError,
    ConversionError,
    ExternalUnavailableError,
    InvalidTransitionError,
    RecordNotFoundError,
    StateConflictError,
    UnsupportedCurrencyError,
    ValidationError,
)

__all__ = [
    "calculate_commission",
    "CommissionBreakdown",
    "ConversionError",
    "ValidationError",
    "UnsupportedCurrencyError",
    "AuthorizationError",
    "InvalidTransitionError",
    "StateConflictError",
    "RecordNotFoundError",
    "ExternalUnavailableError",
]
