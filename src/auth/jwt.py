"""
JWT token management.

Browser sessions carry the token in an httpOnly cookie; API clients may
send it as a Bearer token instead.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from src.config import settings

# JWT configuration
ALGORITHM = "HS256"
TOKEN_TYPE = "access"
COOKIE_NAME = "access_token"


def create_access_token(
    user_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User's database ID
        role: User's role (rep/manager/director/admin)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expire_hours))

    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": TOKEN_TYPE,
        "iat": now,
    }

    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify and decode a JWT token.

    Returns:
        {"user_id", "role"} or None if the token is invalid/expired.
        The role is informational only; permissions are always
        re-derived from the user row.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[ALGORITHM],
        )
    except JWTError:
        return None

    if payload.get("type") != TOKEN_TYPE:
        return None

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        return None

    try:
        return {"user_id": int(user_id), "role": role}
    except ValueError:
        return None


def get_token_from_request(request) -> Optional[str]:
    """Token from the session cookie, else from an Authorization: Bearer header."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token

    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None
