"""Authentication schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from src.models.user import UserRole


class LoginRequest(BaseModel):
    """Login request body."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Login response."""

    success: bool
    message: str
    role: str = Field(default="")


class ProfileResponse(BaseModel):
    """Current user with derived capabilities."""

    id: int
    username: str
    display_name: str
    role: UserRole
    preferred_currency: Optional[str] = None
    default_commission_rate: Optional[Decimal] = None
    can_recommend: bool = False
    can_approve: bool = False

    model_config = {"from_attributes": True}
