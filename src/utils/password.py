"""
Password hashing utilities using bcrypt.
"""

from passlib.context import CryptContext

# bcrypt only; hashes from older schemes are flagged for rehash on login
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
)

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    """Hash a plain-text password."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Check a plain-text password against a stored hash.

    Malformed hashes count as a mismatch rather than an error.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def needs_rehash(hashed_password: str) -> bool:
    """True when the stored hash uses outdated parameters."""
    return pwd_context.needs_update(hashed_password)
