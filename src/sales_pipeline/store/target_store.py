"""Sales target persistence."""
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.db.models import SalesTargetRow
from sales_pipeline.domain.records import SalesTarget, target_from_row
from sales_pipeline.domain.target_rollup import validate_target
from sales_pipeline.errors import InvalidArgument, NotFound

logger = logging.getLogger(__name__)


async def create(
    session: AsyncSession,
    target: SalesTarget,
    created_by: str | None = None,
) -> SalesTarget:
    """Validate and insert a target (``period_end >= period_start``, ``amount >= 0``)."""
    validate_target(target)
    try:
        row = SalesTargetRow(
            assigned_to=target.assigned_to,
            created_by=created_by,
            amount=target.amount,
            measure=target.measure,
            period_start=target.period_start,
            period_end=target.period_end,
        )
        session.add(row)
        await session.commit()
        await session.refresh(row)
    except Exception:
        logger.exception("Failed to create sales target for %s", target.assigned_to)
        await session.rollback()
        raise
    logger.info(
        "Created %s target %s for %s (%s..%s)",
        row.measure, row.amount, row.assigned_to, row.period_start, row.period_end,
    )
    return target_from_row(row)


async def get(session: AsyncSession, target_id: str) -> SalesTarget:
    try:
        result = await session.execute(select(SalesTargetRow).where(SalesTargetRow.id == target_id))
        row = result.scalar_one_or_none()
    except Exception:
        logger.exception("Failed to fetch sales target: %s", target_id)
        await session.rollback()
        raise
    if row is None:
        raise NotFound(f"Sales target {target_id} not found")
    return target_from_row(row)


async def fetch_overlapping(
    session: AsyncSession,
    profile_ids: list[str],
    window_start: date,
    window_end: date,
    measure: str | None = None,
) -> list[SalesTarget]:
    """Targets assigned to any of ``profile_ids`` whose period touches the window."""
    if window_end < window_start:
        raise InvalidArgument(f"window_end {window_end} is before window_start {window_start}")
    if not profile_ids:
        return []

    stmt = select(SalesTargetRow).where(
        SalesTargetRow.assigned_to.in_(profile_ids),
        SalesTargetRow.period_start <= window_end,
        SalesTargetRow.period_end >= window_start,
    )
    if measure:
        stmt = stmt.where(SalesTargetRow.measure == measure)

    try:
        result = await session.execute(stmt)
        rows = list(result.scalars().all())
    except Exception:
        logger.exception("Failed to fetch sales targets")
        await session.rollback()
        raise
    return [target_from_row(r) for r in rows]
