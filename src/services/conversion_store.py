"""
Persistence for conversion records.

Supports the three operations the workflow needs: create, conditional
update by expected status, and filtered reads (status, rep, date range).
"""

import logging
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.permissions import awaiting_statuses, visible_statuses
from src.models import ConversionRecord, ConversionStatus, User, UserRole

logger = logging.getLogger(__name__)


async def create_record(db: AsyncSession, **fields: Any) -> ConversionRecord:
    """Insert a new record. Caller commits."""
    record = ConversionRecord(**fields)
    db.add(record)
    await db.flush()
    return record


async def get_record(db: AsyncSession, record_id: str) -> Optional[ConversionRecord]:
    return await db.get(ConversionRecord, record_id)


async def update_if_status(
    db: AsyncSession,
    record_id: str,
    expected: ConversionStatus,
    values: dict,
) -> bool:
    """
    Apply `values` only if the record is still in `expected` status.

    This is the single write path for workflow transitions. The status
    check and the write happen in one UPDATE statement, so of two
    concurrent transitions from the same state exactly one matches a row.

    Returns:
        True if the row was updated, False if the status had moved on
    """
    result = await db.execute(
        update(ConversionRecord)
        .where(
            ConversionRecord.id == record_id,
            ConversionRecord.status == expected,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    matched = result.rowcount == 1
    if not matched:
        logger.info(
            f"Conditional update on conversion {record_id} missed: "
            f"expected status {expected.value}"
        )
    return matched


async def list_records(
    db: AsyncSession,
    statuses: Optional[Iterable[ConversionStatus]] = None,
    rep_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Sequence[ConversionRecord]:
    """Filtered read, newest first."""
    query = _filtered_query(select(ConversionRecord), statuses, rep_id, start_date, end_date)
    query = query.order_by(ConversionRecord.created_at.desc(), ConversionRecord.id)
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()


async def count_records(
    db: AsyncSession,
    statuses: Optional[Iterable[ConversionStatus]] = None,
    rep_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> int:
    query = _filtered_query(
        select(func.count()).select_from(ConversionRecord),
        statuses, rep_id, start_date, end_date,
    )
    total = await db.scalar(query)
    return total or 0


async def list_visible_conversions(
    db: AsyncSession,
    actor: User,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[ConversionRecord]:
    """
    Conversions an actor works with.

    - rep: own conversions, every status
    - manager: pending + rejected (to recommend or amend)
    - director: recommended + rejected (to approve or amend)
    - admin: everything
    """
    rep_id = actor.id if actor.role == UserRole.REP else None
    records = await list_records(
        db,
        statuses=visible_statuses(actor.role),
        rep_id=rep_id,
        limit=limit,
        offset=offset,
    )
    return list(records)


async def count_visible_conversions(db: AsyncSession, actor: User) -> int:
    """Total behind list_visible_conversions, ignoring paging."""
    rep_id = actor.id if actor.role == UserRole.REP else None
    return await count_records(db, statuses=visible_statuses(actor.role), rep_id=rep_id)


async def count_awaiting_review(db: AsyncSession, actor: User) -> int:
    """Number of conversions waiting for this actor's role to act."""
    statuses = awaiting_statuses(actor.role)
    if not statuses:
        return 0
    return await count_records(db, statuses=statuses)


def _filtered_query(query, statuses, rep_id, start_date, end_date):
    if statuses is not None:
        query = query.where(ConversionRecord.status.in_(list(statuses)))
    if rep_id is not None:
        query = query.where(ConversionRecord.rep_id == rep_id)
    if start_date is not None:
        query = query.where(ConversionRecord.conversion_date >= start_date)
    if end_date is not None:
        query = query.where(ConversionRecord.conversion_date <= end_date)
    return query
