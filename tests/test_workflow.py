"""
Tests for the conversion approval workflow.

Covers:
- Submission with deduction snapshot and rate defaults
- Every (status, action, role) combination against the transition table
- Reject and amend side effects
- Conditional update conflict between two sessions, sequential and simultaneous
- Stored amounts reproduce the commission after a reload
- Visibility and awaiting-review counts per role
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.models import (
    AuditAction,
    AuditLog,
    Base,
    ConversionRecord,
    ConversionStatus,
    DeductionRule,
    User,
    UserRole,
)
from src.schemas.conversion import ConversionResponse
from src.services.commission import calculate_commission
from src.services import conversion_store
from src.services.conversion_store import (
    count_awaiting_review,
    count_visible_conversions,
    list_visible_conversions,
)
from src.services.errors import (
    AuthorizationError,
    InvalidTransitionError,
    RecordNotFoundError,
    StateConflictError,
    UnsupportedCurrencyError,
    ValidationError,
)
from src.services.workflow import (
    TRANSITIONS,
    WorkflowAction,
    allowed_actions,
    amend_conversion,
    approve_conversion,
    get_conversion,
    recommend_conversion,
    reject_conversion,
    submit_conversion,
)


async def _record(db, rep, status=ConversionStatus.PENDING, **kwargs):
    """Insert a record directly in the given status."""
    values = {
        "lead_id": "lead-1",
        "rep_id": rep.id,
        "revenue_amount": Decimal("1000.00"),
        "currency": "USD",
        "commission_rate": Decimal("10"),
        "deductions_applied": [],
        "commissionable_amount": Decimal("1000.00"),
        "commission_amount": Decimal("100.00"),
        "status": status,
        "submitted_by": rep.id,
        "submitted_at": datetime.now(timezone.utc),
    }
    values.update(kwargs)
    record = ConversionRecord(**values)
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


async def _run(db, action, actor, record):
    if action == WorkflowAction.RECOMMEND:
        return await recommend_conversion(db, actor.id, record.id)
    if action == WorkflowAction.APPROVE:
        return await approve_conversion(db, actor.id, record.id)
    if action == WorkflowAction.REJECT:
        return await reject_conversion(db, actor.id, record.id, reason="Duplicate lead")
    return await amend_conversion(db, actor.id, record.id, Decimal("1500"), Decimal("10"))


# Expected outcomes, written out independently of TRANSITIONS
EXPECTED_SUCCESS = {
    (ConversionStatus.PENDING, WorkflowAction.RECOMMEND): {"manager", "admin"},
    (ConversionStatus.RECOMMENDED, WorkflowAction.APPROVE): {"director", "admin"},
    (ConversionStatus.PENDING, WorkflowAction.REJECT): {"director", "admin"},
    (ConversionStatus.RECOMMENDED, WorkflowAction.REJECT): {"director", "admin"},
    (ConversionStatus.REJECTED, WorkflowAction.AMEND): {"rep", "manager", "director", "admin"},
}


# ── submit ────────────────────────────────────────────────


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_applies_schedule(self, db_session, users, deduction_schedule):
        rep = users["rep"]
        record = await submit_conversion(
            db_session, rep.id, "lead-42", Decimal("1000.00"), Decimal("10"), "USD", notes="Big win",
        )

        assert record.status == ConversionStatus.PENDING
        assert record.commissionable_amount == Decimal("931.00")
        assert record.commission_amount == Decimal("93.10")
        assert record.deductions_applied == [
            {"label": "Tax", "percentage": "5", "amount": "50.00"},
            {"label": "Admin Fee", "percentage": "2", "amount": "19.00"},
        ]
        assert record.submitted_by == rep.id
        assert record.submitted_at is not None
        assert record.recommended_by is None
        assert record.notes == "Big win"

    @pytest.mark.asyncio
    async def test_snapshot_is_frozen(self, db_session, users, deduction_schedule):
        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "1000", "10", "USD")

        deduction_schedule[0].percentage = Decimal("50")
        await db_session.commit()
        await db_session.refresh(record)

        assert record.commissionable_amount == Decimal("931.00")
        assert record.deductions_applied[0]["percentage"] == "5"

    @pytest.mark.asyncio
    async def test_inactive_deductions_are_skipped(self, db_session, users):
        db_session.add(DeductionRule(label="Old", percentage=Decimal("30"), position=0, is_active=False))
        await db_session.commit()

        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "1000", "10", "USD")
        assert record.commissionable_amount == Decimal("1000.00")
        assert record.deductions_applied == []

    @pytest.mark.asyncio
    async def test_rate_defaults_to_rep_rate(self, db_session, make_user):
        rep = await make_user(UserRole.REP, default_commission_rate=Decimal("12.5"))
        record = await submit_conversion(db_session, rep.id, "lead-1", "1000", None, "USD")
        assert record.commission_rate == Decimal("12.5")
        assert record.commission_amount == Decimal("125.00")

    @pytest.mark.asyncio
    async def test_rate_defaults_to_organization_rate(self, db_session, users):
        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "1000", None, "USD")
        assert record.commission_rate == Decimal("10")

    @pytest.mark.asyncio
    async def test_currency_is_normalized(self, db_session, users):
        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "50", "10", " eur ")
        assert record.currency == "EUR"

    @pytest.mark.asyncio
    async def test_unknown_currency(self, db_session, users):
        with pytest.raises(UnsupportedCurrencyError):
            await submit_conversion(db_session, users["rep"].id, "lead-1", "50", "10", "ZZZ")

    @pytest.mark.asyncio
    async def test_negative_revenue_writes_nothing(self, db_session, users):
        with pytest.raises(ValidationError):
            await submit_conversion(db_session, users["rep"].id, "lead-1", "-10", "10", "USD")

        count = (await db_session.execute(select(ConversionRecord))).scalars().all()
        assert count == []

    @pytest.mark.asyncio
    async def test_missing_lead(self, db_session, users):
        with pytest.raises(ValidationError) as exc:
            await submit_conversion(db_session, users["rep"].id, "  ", "10", "10", "USD")
        assert exc.value.field == "lead_id"

    @pytest.mark.asyncio
    async def test_inactive_user_cannot_submit(self, db_session, make_user):
        rep = await make_user(UserRole.REP, is_active=False)
        with pytest.raises(AuthorizationError):
            await submit_conversion(db_session, rep.id, "lead-1", "10", "10", "USD")

    @pytest.mark.asyncio
    async def test_submit_is_audited(self, db_session, users):
        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "10", "10", "USD")
        logs = (await db_session.execute(select(AuditLog))).scalars().all()
        assert [(log.action, log.target_id) for log in logs] == [
            (AuditAction.SUBMIT_CONVERSION, record.id)
        ]


# ── transition table ──────────────────────────────────────


class TestTransitionTable:
    def test_table_matches_expected(self):
        for (status, action), roles in EXPECTED_SUCCESS.items():
            assert status in TRANSITIONS[action].from_states
        assert TRANSITIONS[WorkflowAction.APPROVE].from_states == {ConversionStatus.RECOMMENDED}
        assert TRANSITIONS[WorkflowAction.AMEND].to_state == ConversionStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", list(ConversionStatus))
    @pytest.mark.parametrize("action", list(WorkflowAction))
    @pytest.mark.parametrize("role", ["rep", "manager", "director", "admin"])
    async def test_every_combination(self, db_session, users, status, action, role):
        record = await _record(db_session, users["rep"], status=status)
        actor = users[role]
        should_succeed = role in EXPECTED_SUCCESS.get((status, action), set())

        if should_succeed:
            updated = await _run(db_session, action, actor, record)
            assert updated.status == TRANSITIONS[action].to_state
        else:
            with pytest.raises(AuthorizationError):
                await _run(db_session, action, actor, record)
            await db_session.refresh(record)
            assert record.status == status

    @pytest.mark.asyncio
    async def test_allowed_actions(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.PENDING)
        assert allowed_actions(users["manager"], record) == [WorkflowAction.RECOMMEND]
        assert allowed_actions(users["director"], record) == [WorkflowAction.REJECT]
        assert allowed_actions(users["rep"], record) == []


# ── individual transitions ────────────────────────────────


class TestTransitions:
    @pytest.mark.asyncio
    async def test_full_approval_path(self, db_session, users):
        record = await submit_conversion(db_session, users["rep"].id, "lead-1", "1000", "10", "USD")

        record = await recommend_conversion(db_session, users["manager"].id, record.id, notes="Looks good")
        assert record.status == ConversionStatus.RECOMMENDED
        assert record.recommended_by == users["manager"].id
        assert record.recommended_at is not None
        assert record.workflow_notes == "Looks good"

        record = await approve_conversion(db_session, users["director"].id, record.id)
        assert record.status == ConversionStatus.APPROVED
        assert record.approved_by == users["director"].id
        assert record.workflow_notes == "Looks good"

        actions = (await db_session.execute(
            select(AuditLog.action).order_by(AuditLog.id)
        )).scalars().all()
        assert actions == [
            AuditAction.SUBMIT_CONVERSION,
            AuditAction.RECOMMEND_CONVERSION,
            AuditAction.APPROVE_CONVERSION,
        ]

    @pytest.mark.asyncio
    async def test_manager_cannot_approve_pending(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.PENDING)

        with pytest.raises(AuthorizationError):
            await approve_conversion(db_session, users["manager"].id, record.id)

        await db_session.refresh(record)
        assert record.status == ConversionStatus.PENDING
        assert record.approved_by is None

    @pytest.mark.asyncio
    async def test_wrong_state_is_invalid_transition(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.PENDING)

        with pytest.raises(InvalidTransitionError) as exc:
            await approve_conversion(db_session, users["director"].id, record.id)
        assert exc.value.status_code == 403
        assert exc.value.code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_reject_records_rejecter(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.RECOMMENDED)

        record = await reject_conversion(
            db_session, users["director"].id, record.id, reason="  Wrong amount ", notes="Check invoice",
        )
        assert record.status == ConversionStatus.REJECTED
        assert record.rejection_reason == "Wrong amount"
        assert record.approved_by == users["director"].id
        assert record.workflow_notes == "Check invoice"

        response = ConversionResponse.model_validate(record)
        assert response.rejected_by == users["director"].id
        assert response.counts_toward_totals is False
        assert response.workflow_progress == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [None, "", "   "])
    async def test_reject_requires_reason(self, db_session, users, reason):
        record = await _record(db_session, users["rep"], status=ConversionStatus.RECOMMENDED)

        with pytest.raises(ValidationError) as exc:
            await reject_conversion(db_session, users["director"].id, record.id, reason=reason)
        assert exc.value.field == "rejection_reason"

        await db_session.refresh(record)
        assert record.status == ConversionStatus.RECOMMENDED

    @pytest.mark.asyncio
    async def test_validation_runs_before_authorization(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.RECOMMENDED)
        with pytest.raises(ValidationError):
            await reject_conversion(db_session, users["rep"].id, record.id, reason="")

    @pytest.mark.asyncio
    async def test_admin_can_reject_pending(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.PENDING)
        record = await reject_conversion(db_session, users["admin"].id, record.id, reason="Not a real deal")
        assert record.status == ConversionStatus.REJECTED
        assert record.approved_by == users["admin"].id

    @pytest.mark.asyncio
    async def test_amend_resets_review_trail(self, db_session, users, deduction_schedule):
        now = datetime.now(timezone.utc)
        record = await _record(
            db_session,
            users["rep"],
            status=ConversionStatus.REJECTED,
            recommended_by=users["manager"].id,
            recommended_at=now,
            approved_by=users["director"].id,
            approved_at=now,
            rejection_reason="Wrong amount",
            workflow_notes="old note",
        )

        record = await amend_conversion(
            db_session, users["rep"].id, record.id, Decimal("2000"), Decimal("5"), notes="Fixed amount",
        )

        assert record.status == ConversionStatus.PENDING
        assert record.recommended_by is None
        assert record.recommended_at is None
        assert record.approved_by is None
        assert record.approved_at is None
        assert record.rejection_reason is None
        assert record.submitted_by == users["rep"].id
        assert record.workflow_notes == "Fixed amount"
        # 2000 * 0.95 * 0.98
        assert record.revenue_amount == Decimal("2000.00")
        assert record.commissionable_amount == Decimal("1862.00")
        assert record.commission_amount == Decimal("93.10")

    @pytest.mark.asyncio
    async def test_amend_by_reviewer_takes_over_submission(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.REJECTED)
        record = await amend_conversion(db_session, users["manager"].id, record.id, "900", "10")
        assert record.submitted_by == users["manager"].id
        assert record.rep_id == users["rep"].id

    @pytest.mark.asyncio
    async def test_other_rep_cannot_amend(self, db_session, users, make_user):
        other = await make_user(UserRole.REP)
        record = await _record(db_session, users["rep"], status=ConversionStatus.REJECTED)
        with pytest.raises(AuthorizationError):
            await amend_conversion(db_session, other.id, record.id, "900", "10")

    @pytest.mark.asyncio
    async def test_amend_validates_inputs(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.REJECTED)
        with pytest.raises(ValidationError):
            await amend_conversion(db_session, users["rep"].id, record.id, "900", "101")

    @pytest.mark.asyncio
    async def test_unknown_record(self, db_session, users):
        with pytest.raises(RecordNotFoundError):
            await approve_conversion(db_session, users["director"].id, "missing")
        with pytest.raises(RecordNotFoundError):
            await get_conversion(db_session, "missing")

    @pytest.mark.asyncio
    async def test_unknown_actor(self, db_session, users):
        record = await _record(db_session, users["rep"], status=ConversionStatus.RECOMMENDED)
        with pytest.raises(AuthorizationError):
            await approve_conversion(db_session, 9999, record.id)


# ── concurrent transitions ────────────────────────────────


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """Two sessions need two real connections, so use a file database."""
    # Writers wait on the SQLite lock instead of failing fast
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


class TestConcurrentApproval:
    @pytest.mark.asyncio
    async def test_second_approval_conflicts(self, file_engine):
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

        async with factory() as setup:
            rep = User(username="rep", display_name="Rep", password_hash="!", role=UserRole.REP)
            first = User(username="d1", display_name="D1", password_hash="!", role=UserRole.DIRECTOR)
            second = User(username="d2", display_name="D2", password_hash="!", role=UserRole.DIRECTOR)
            setup.add_all([rep, first, second])
            await setup.commit()
            record = await _record(setup, rep, status=ConversionStatus.RECOMMENDED)
            record_id, first_id, second_id = record.id, first.id, second.id

        async with factory() as a, factory() as b:
            # Both directors have the record open while it is still recommended
            await get_conversion(a, record_id)
            await get_conversion(b, record_id)

            approved = await approve_conversion(a, first_id, record_id)
            assert approved.status == ConversionStatus.APPROVED

            with pytest.raises(StateConflictError) as exc:
                await approve_conversion(b, second_id, record_id)
            assert exc.value.status_code == 409

        async with factory() as check:
            stored = await check.get(ConversionRecord, record_id)
            assert stored.status == ConversionStatus.APPROVED
            assert stored.approved_by == first_id

            approvals = (await check.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.APPROVE_CONVERSION)
            )).scalars().all()
            assert [log.user_id for log in approvals] == [first_id]

    @pytest.mark.asyncio
    async def test_simultaneous_approvals(self, file_engine):
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

        async with factory() as setup:
            rep = User(username="rep", display_name="Rep", password_hash="!", role=UserRole.REP)
            first = User(username="d1", display_name="D1", password_hash="!", role=UserRole.DIRECTOR)
            second = User(username="d2", display_name="D2", password_hash="!", role=UserRole.DIRECTOR)
            setup.add_all([rep, first, second])
            await setup.commit()
            record = await _record(setup, rep, status=ConversionStatus.RECOMMENDED)
            record_id, director_ids = record.id, [first.id, second.id]

        # Hold both at the conditional update so each has already seen "recommended"
        real_update = conversion_store.update_if_status
        both_checked = asyncio.Event()
        arrived = []

        async def gated_update(*args, **kwargs):
            arrived.append(1)
            if len(arrived) == 2:
                both_checked.set()
            await asyncio.wait_for(both_checked.wait(), timeout=10)
            return await real_update(*args, **kwargs)

        async def approve_as(director_id):
            async with factory() as db:
                return await approve_conversion(db, director_id, record_id)

        with patch.object(conversion_store, "update_if_status", gated_update):
            results = await asyncio.gather(
                *(approve_as(director_id) for director_id in director_ids),
                return_exceptions=True,
            )

        assert len(arrived) == 2

        approved = [r for r in results if isinstance(r, ConversionRecord)]
        conflicts = [r for r in results if isinstance(r, StateConflictError)]
        assert len(approved) == 1
        assert len(conflicts) == 1
        assert approved[0].status == ConversionStatus.APPROVED

        async with factory() as check:
            stored = await check.get(ConversionRecord, record_id)
            assert stored.status == ConversionStatus.APPROVED
            assert stored.approved_by == approved[0].approved_by

            approvals = (await check.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.APPROVE_CONVERSION)
            )).scalars().all()
            assert [log.user_id for log in approvals] == [stored.approved_by]


# ── stored values ─────────────────────────────────────────


class TestStoredValues:
    """Reload in a fresh session: what the columns hold must reproduce the commission."""

    @pytest_asyncio.fixture
    async def factory(self, file_engine):
        factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as setup:
            rep = User(username="rep", display_name="Rep", password_hash="!", role=UserRole.REP)
            setup.add(rep)
            await setup.commit()
        return factory

    async def _rep_id(self, db):
        return await db.scalar(select(User.id).where(User.username == "rep"))

    @pytest.mark.asyncio
    async def test_commission_reproducible_after_reload(self, factory):
        async with factory() as db:
            db.add_all([
                DeductionRule(label="Tax", percentage=Decimal("5.25"), position=0, is_active=True),
                DeductionRule(label="Fee", percentage=Decimal("1.75"), position=1, is_active=True),
            ])
            await db.commit()
            record = await submit_conversion(
                db, await self._rep_id(db), "L1", Decimal("1234.57"), Decimal("12.35"), "USD",
            )
            record_id = record.id

        async with factory() as fresh:
            stored = await fresh.get(ConversionRecord, record_id)
            rules = [
                SimpleNamespace(label=d["label"], percentage=Decimal(d["percentage"]))
                for d in stored.deductions_applied
            ]
            again = calculate_commission(stored.revenue_amount, stored.commission_rate, rules)

            assert again.commissionable == stored.commissionable_amount
            assert again.final_commission == stored.commission_amount

    @pytest.mark.asyncio
    async def test_no_deductions_identity_after_reload(self, factory):
        async with factory() as db:
            record = await submit_conversion(db, await self._rep_id(db), "L1", "100.01", "10", "USD")
            record_id = record.id

        async with factory() as fresh:
            stored = await fresh.get(ConversionRecord, record_id)
            assert stored.commissionable_amount == stored.revenue_amount == Decimal("100.01")
            assert stored.commission_amount == Decimal("10.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("revenue,rate,field", [
        (1000, 10.005, "commission_rate"),
        (100.005, 10, "revenue_amount"),
    ])
    async def test_extra_decimal_places_rejected(self, factory, revenue, rate, field):
        async with factory() as db:
            with pytest.raises(ValidationError) as exc:
                await submit_conversion(db, await self._rep_id(db), "L1", revenue, rate, "USD")
            assert exc.value.field == field

        async with factory() as fresh:
            assert await fresh.scalar(select(func.count()).select_from(ConversionRecord)) == 0


# ── visibility ────────────────────────────────────────────


class TestVisibility:
    @pytest_asyncio.fixture
    async def one_of_each(self, db_session, users, make_user):
        other_rep = await make_user(UserRole.REP)
        records = {}
        for status in ConversionStatus:
            records[status] = await _record(db_session, users["rep"], status=status)
        records["other"] = await _record(db_session, other_rep, status=ConversionStatus.PENDING)
        return records

    @pytest.mark.asyncio
    async def test_rep_sees_own_records(self, db_session, users, one_of_each):
        visible = await list_visible_conversions(db_session, users["rep"])
        assert {r.id for r in visible} == {one_of_each[s].id for s in ConversionStatus}

    @pytest.mark.asyncio
    async def test_manager_sees_pending_and_rejected(self, db_session, users, one_of_each):
        visible = await list_visible_conversions(db_session, users["manager"])
        assert {r.status for r in visible} == {ConversionStatus.PENDING, ConversionStatus.REJECTED}
        assert len(visible) == 3

    @pytest.mark.asyncio
    async def test_director_sees_recommended_and_rejected(self, db_session, users, one_of_each):
        visible = await list_visible_conversions(db_session, users["director"])
        assert {r.status for r in visible} == {ConversionStatus.RECOMMENDED, ConversionStatus.REJECTED}

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, db_session, users, one_of_each):
        visible = await list_visible_conversions(db_session, users["admin"])
        assert len(visible) == 5

    @pytest.mark.asyncio
    async def test_awaiting_review_counts(self, db_session, users, one_of_each):
        assert await count_awaiting_review(db_session, users["rep"]) == 0
        assert await count_awaiting_review(db_session, users["manager"]) == 2
        assert await count_awaiting_review(db_session, users["director"]) == 1

    @pytest.mark.asyncio
    async def test_visible_count_ignores_paging(self, db_session, users, one_of_each):
        page = await list_visible_conversions(db_session, users["admin"], limit=2)
        assert len(page) == 2
        assert await count_visible_conversions(db_session, users["admin"]) == 5
        assert await count_visible_conversions(db_session, users["rep"]) == 4
        assert await count_awaiting_review(db_session, users["admin"]) == 3
