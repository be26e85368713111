"""
Seed test data for SalesTrack.

Usage:
    python scripts/seed_test_data.py

Or with custom DATABASE_URL:
    DATABASE_URL="postgresql://..." python scripts/seed_test_data.py

This script creates:
- One user per role (rep, manager, director) if not exists
- A two-step deduction schedule (Tax 5%, Admin Fee 2%) if empty
- Conversions in every workflow status, moved there through the workflow
"""

import asyncio
import os
import sys
from decimal import Decimal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.models import DeductionRule, User, UserRole
from src.services import workflow
from src.services.deductions import create_deduction_rule
from src.utils.password import hash_password


DATABASE_URL = os.environ.get("DATABASE_URL", settings.database_url)

# Convert to asyncpg format if needed
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
elif DATABASE_URL.startswith("postgresql://") and "+asyncpg" not in DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)


# ===== TEST DATA =====

TEST_PASSWORD = "test123"

TEST_USERS = [
    {"username": "test_rep", "role": UserRole.REP, "display_name": "Test Rep", "rate": Decimal("12.5")},
    {"username": "test_rep_eur", "role": UserRole.REP, "display_name": "Test Rep (EUR)", "currency": "EUR"},
    {"username": "test_manager", "role": UserRole.MANAGER, "display_name": "Test Manager"},
    {"username": "test_director", "role": UserRole.DIRECTOR, "display_name": "Test Director"},
]

TEST_DEALS = [
    {"lead_id": "LEAD-1001", "revenue": Decimal("1000.00"), "currency": "USD"},
    {"lead_id": "LEAD-1002", "revenue": Decimal("2500.00"), "currency": "USD"},
    {"lead_id": "LEAD-1003", "revenue": Decimal("780.00"), "currency": "EUR"},
    {"lead_id": "LEAD-1004", "revenue": Decimal("12000.00"), "currency": "USD"},
    {"lead_id": "LEAD-1005", "revenue": Decimal("450.00"), "currency": "GBP"},
]


async def get_or_create_user(db: AsyncSession, entry: dict) -> User:
    result = await db.execute(
        select(User).where(User.username == entry["username"])
    )
    user = result.scalar_one_or_none()

    if not user:
        user = User(
            username=entry["username"],
            password_hash=hash_password(TEST_PASSWORD),
            role=entry["role"],
            display_name=entry["display_name"],
            is_active=True,
            preferred_currency=entry.get("currency"),
            default_commission_rate=entry.get("rate"),
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        print(f"Created {entry['role'].value}: {entry['username']} / {TEST_PASSWORD}")
    else:
        print(f"{entry['username']} already exists (id={user.id})")

    return user


async def ensure_deductions(db: AsyncSession, admin_id=None) -> None:
    existing = await db.scalar(select(DeductionRule.id).limit(1))
    if existing:
        print("Deduction schedule already configured")
        return

    await create_deduction_rule(db, "Tax", Decimal("5"), created_by=admin_id)
    await create_deduction_rule(db, "Admin Fee", Decimal("2"), created_by=admin_id)
    await db.commit()
    print("Created deductions: Tax 5%, Admin Fee 2%")


async def seed_all() -> None:
    engine = create_async_engine(DATABASE_URL, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as db:
        print("\n=== Creating test data ===\n")

        users = {entry["username"]: await get_or_create_user(db, entry) for entry in TEST_USERS}
        rep = users["test_rep"]
        rep_eur = users["test_rep_eur"]
        manager = users["test_manager"]
        director = users["test_director"]

        await ensure_deductions(db)

        records = []
        for i, deal in enumerate(TEST_DEALS):
            owner = rep_eur if deal["currency"] == "EUR" else rep
            record = await workflow.submit_conversion(
                db,
                rep_id=owner.id,
                lead_id=deal["lead_id"],
                revenue=deal["revenue"],
                currency=deal["currency"],
                notes=f"Seeded deal {i + 1}",
            )
            records.append(record)

        # pending, recommended, approved, approved, rejected
        await workflow.recommend_conversion(db, manager.id, records[1].id)
        for record in records[2:5]:
            await workflow.recommend_conversion(db, manager.id, record.id)
        await workflow.approve_conversion(db, director.id, records[2].id, notes="Verified")
        await workflow.approve_conversion(db, director.id, records[3].id)
        await workflow.reject_conversion(db, director.id, records[4].id, reason="Lead already counted")

        print("\n" + "=" * 50)
        print("TEST DATA CREATED SUCCESSFULLY!")
        print("=" * 50)
        for record in records:
            await db.refresh(record)
            print(
                f"  {record.lead_id}: {record.status.value:<12} "
                f"{record.revenue_amount} {record.currency} -> commission {record.commission_amount}"
            )
        print(f"\nLogins: {', '.join(users)} (password: {TEST_PASSWORD})")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_all())
