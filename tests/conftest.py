"""
Pytest configuration and fixtures.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from src.models import Base, DeductionRule, User, UserRole


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixtures never log in, so a bcrypt hash is not needed
UNUSED_HASH = "!"


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Factory: await make_user(UserRole.MANAGER, username="m1")."""
    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.REP, **kwargs) -> User:
        counter["n"] += 1
        defaults = {
            "username": f"{role.value}{counter['n']}",
            "display_name": f"{role.value.title()} {counter['n']}",
            "password_hash": UNUSED_HASH,
            "role": role,
            "is_active": True,
            "preferred_currency": None,
            "default_commission_rate": None,
        }
        defaults.update(kwargs)
        user = User(**defaults)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def users(make_user):
    """One active user per role."""
    return {
        "rep": await make_user(UserRole.REP),
        "manager": await make_user(UserRole.MANAGER),
        "director": await make_user(UserRole.DIRECTOR),
        "admin": await make_user(UserRole.ADMIN),
    }


@pytest_asyncio.fixture
async def deduction_schedule(db_session):
    """Tax 5% then Admin Fee 2%."""
    rules = [
        DeductionRule(label="Tax", percentage=Decimal("5"), position=0, is_active=True),
        DeductionRule(label="Admin Fee", percentage=Decimal("2"), position=1, is_active=True),
    ]
    db_session.add_all(rules)
    await db_session.commit()
    return rules
