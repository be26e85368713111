"""
Role -> capability mapping.

Capabilities are derived once per request; transition rules only ever look
at these flags, never at role strings.
"""

from dataclasses import dataclass
from typing import FrozenSet

from sqlalchemy.ext.asyncio import AsyncSession

from src.models import ConversionStatus, User, UserRole
from src.services.errors import AuthorizationError

RECOMMENDER_ROLES = frozenset({UserRole.MANAGER, UserRole.ADMIN})
APPROVER_ROLES = frozenset({UserRole.DIRECTOR, UserRole.ADMIN})


@dataclass(frozen=True)
class Capabilities:
    role: UserRole
    can_submit: bool
    can_recommend: bool
    can_approve: bool

    @classmethod
    def for_role(cls, role: UserRole) -> "Capabilities":
        role = UserRole(role)
        return cls(
            role=role,
            can_submit=True,
            can_recommend=role in RECOMMENDER_ROLES,
            can_approve=role in APPROVER_ROLES,
        )

    @property
    def can_review(self) -> bool:
        return self.can_recommend or self.can_approve

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# Statuses each role works on in its conversion list. None = no status filter.
# Reps are filtered by ownership instead.
_VISIBLE_STATUSES = {
    UserRole.REP: None,
    UserRole.MANAGER: frozenset({ConversionStatus.PENDING, ConversionStatus.REJECTED}),
    UserRole.DIRECTOR: frozenset({ConversionStatus.RECOMMENDED, ConversionStatus.REJECTED}),
    UserRole.ADMIN: None,
}

# Statuses waiting for this role's action (navigation badge)
_AWAITING_STATUSES = {
    UserRole.REP: frozenset(),
    UserRole.MANAGER: frozenset({ConversionStatus.PENDING}),
    UserRole.DIRECTOR: frozenset({ConversionStatus.RECOMMENDED}),
    UserRole.ADMIN: frozenset({ConversionStatus.PENDING, ConversionStatus.RECOMMENDED}),
}


def visible_statuses(role: UserRole):
    return _VISIBLE_STATUSES[UserRole(role)]


def awaiting_statuses(role: UserRole) -> FrozenSet[ConversionStatus]:
    return _AWAITING_STATUSES[UserRole(role)]


async def resolve_actor(db: AsyncSession, user_id: int) -> User:
    """
    Identity/role lookup for the acting user.

    Raises:
        AuthorizationError: unknown or deactivated user
    """
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise AuthorizationError(f"User {user_id} is not allowed to act on conversions")
    return user
