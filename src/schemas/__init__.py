"""Pydantic schemas for request/response validation."""

from src.schemas.auth import LoginRequest, LoginResponse, ProfileResponse
from src.schemas.conversion import (
    ConversionAmendRequest,
    ConversionListResponse,
    ConversionRejectRequest,
    ConversionResponse,
    ConversionSubmitRequest,
    PendingCountResponse,
    WorkflowNotesRequest,
)
from src.schemas.deduction import DeductionCreate, DeductionResponse, DeductionUpdate
from src.schemas.report import ConvertResponse, RatesResponse, TotalsResponse

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "ProfileResponse",
    # Conversion
    "ConversionSubmitRequest",
    "WorkflowNotesRequest",
    "ConversionRejectRequest",
    "ConversionAmendRequest",
    "ConversionResponse",
    "ConversionListResponse",
    "PendingCountResponse",
    # Deduction
    "DeductionCreate",
    "DeductionUpdate",
    "DeductionResponse",
    # Reports
    "TotalsResponse",
    "RatesResponse",
    "ConvertResponse",
]
