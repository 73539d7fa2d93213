"""Opportunity reads and transactional stage transitions.

Transitions use optimistic concurrency: the UPDATE only matches the row at the
version that was read.  If another writer got there first, nothing matches
and ConflictError is raised; the history entry is never written on its own.
"""
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.db.models import OpportunityRow, StageHistoryRow
from sales_pipeline.domain import transitions
from sales_pipeline.domain.records import (
    STATUS_ARCHIVED,
    Opportunity,
    OrgScope,
    StageHistoryEntry,
    history_from_row,
    opportunity_from_row,
)
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.errors import ConflictError, InvalidArgument, NotFound, PipelineError

logger = logging.getLogger(__name__)

_ACTIONS = {
    transitions.ADVANCE: transitions.advance_stage,
    transitions.MARK_WON: transitions.mark_won,
    transitions.MARK_LOST: transitions.mark_lost,
    transitions.REOPEN: transitions.reopen,
    transitions.HOLD: transitions.hold,
    transitions.RESUME: transitions.resume,
}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def fetch_scoped(
    session: AsyncSession,
    scope: OrgScope,
    period_start: date | None = None,
    period_end: date | None = None,
    forecast_category: str | None = None,
) -> list[Opportunity]:
    """Live (not deleted, not archived) opportunities owned by anyone in scope.

    With a period, only opportunities whose expected close date falls inside
    it are returned; rows without a close date are left out.
    """
    if not scope.unrestricted and not scope.owner_ids:
        return []

    stmt = _live_in_scope(select(OpportunityRow), scope)
    if period_start is not None and period_end is not None:
        stmt = stmt.where(
            OpportunityRow.expected_close_date >= period_start,
            OpportunityRow.expected_close_date <= period_end,
        )
    if forecast_category:
        stmt = stmt.where(OpportunityRow.forecast_category == forecast_category)

    try:
        result = await session.execute(stmt.order_by(OpportunityRow.created_at.desc()))
        rows = list(result.scalars().all())
    except Exception:
        logger.exception("Failed to fetch scoped opportunities")
        await session.rollback()
        raise
    return [opportunity_from_row(r) for r in rows]


async def count_without_close_date(
    session: AsyncSession,
    scope: OrgScope,
    forecast_category: str | None = None,
) -> int:
    """Live opportunities in scope that have no expected close date.

    A period-filtered ``fetch_scoped`` never returns these, so the forecast
    summary gets their count from here.
    """
    if not scope.unrestricted and not scope.owner_ids:
        return 0

    stmt = _live_in_scope(select(func.count()).select_from(OpportunityRow), scope)
    stmt = stmt.where(OpportunityRow.expected_close_date.is_(None))
    if forecast_category:
        stmt = stmt.where(OpportunityRow.forecast_category == forecast_category)

    try:
        result = await session.execute(stmt)
        return result.scalar_one()
    except Exception:
        logger.exception("Failed to count opportunities without close date")
        await session.rollback()
        raise


async def get(session: AsyncSession, opportunity_id: str) -> Opportunity:
    try:
        result = await session.execute(
            select(OpportunityRow).where(
                OpportunityRow.id == opportunity_id,
                OpportunityRow.is_deleted == False,  # noqa: E712
            )
        )
        row = result.scalar_one_or_none()
    except Exception:
        logger.exception("Failed to fetch opportunity: %s", opportunity_id)
        await session.rollback()
        raise
    if row is None:
        raise NotFound(f"Opportunity {opportunity_id} not found")
    return opportunity_from_row(row)


async def fetch_history(
    session: AsyncSession, opportunity_ids: list[str]
) -> dict[str, list[StageHistoryEntry]]:
    """Stage history per opportunity, oldest first."""
    if not opportunity_ids:
        return {}
    try:
        result = await session.execute(
            select(StageHistoryRow)
            .where(StageHistoryRow.opportunity_id.in_(opportunity_ids))
            .order_by(StageHistoryRow.changed_at)
        )
        rows = list(result.scalars().all())
    except Exception:
        logger.exception("Failed to fetch stage history")
        await session.rollback()
        raise

    grouped: dict[str, list[StageHistoryEntry]] = defaultdict(list)
    for r in rows:
        entry = history_from_row(r)
        grouped[entry.opportunity_id].append(entry)
    return dict(grouped)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create(
    session: AsyncSession,
    catalog: StageCatalog,
    owner_id: str,
    name: str,
    amount: Decimal,
    currency: str,
    expected_close_date: date | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Opportunity:
    """Insert a new opportunity at the catalog's first stage, with its first history entry."""
    if amount < 0:
        raise InvalidArgument("amount must be non-negative")
    now = now or datetime.now(timezone.utc)
    fields = transitions.initial_fields(catalog, now)

    try:
        row = OpportunityRow(
            id=str(uuid.uuid4()),
            name=name,
            owner_id=owner_id,
            amount=amount,
            currency=currency,
            expected_close_date=expected_close_date,
            version=1,
            **fields,
        )
        session.add(row)
        await session.flush()
        session.add(StageHistoryRow(
            opportunity_id=row.id,
            from_stage=None,
            to_stage=fields["stage"],
            changed_at=now,
            changed_by=created_by,
            note="Created",
        ))
        await session.commit()
        await session.refresh(row)
    except Exception:
        logger.exception("Failed to create opportunity for owner %s", owner_id)
        await session.rollback()
        raise

    logger.info("Created opportunity %s at stage %s", row.id, fields["stage"])
    return opportunity_from_row(row)


async def apply_transition(
    session: AsyncSession,
    result: transitions.TransitionResult,
    expected_version: int,
) -> Opportunity:
    """Persist a transition: guarded UPDATE plus history append, one commit."""
    opp = result.opportunity
    stmt = (
        update(OpportunityRow)
        .where(
            OpportunityRow.id == opp.id,
            OpportunityRow.version == expected_version,
            OpportunityRow.is_deleted == False,  # noqa: E712
        )
        .values(
            stage=opp.stage,
            status=opp.status,
            probability=opp.probability,
            forecast_category=opp.forecast_category,
            stage_entered_at=opp.stage_entered_at,
            close_date=opp.close_date,
            loss_reason=opp.loss_reason,
            version=opp.version,
        )
    )
    try:
        outcome = await session.execute(stmt)
        if outcome.rowcount != 1:
            raise ConflictError(
                f"Opportunity {opp.id} was changed by someone else (expected version {expected_version})"
            )
        h = result.history
        session.add(StageHistoryRow(
            opportunity_id=h.opportunity_id,
            from_stage=h.from_stage,
            to_stage=h.to_stage,
            changed_at=h.changed_at,
            changed_by=h.changed_by,
            note=h.note,
        ))
        await session.commit()
    except PipelineError:
        await session.rollback()
        raise
    except Exception:
        logger.exception("Failed to apply %s to opportunity %s", result.action, opp.id)
        await session.rollback()
        raise

    logger.info(
        "Opportunity %s: %s (%s -> %s) by %s",
        opp.id, result.action, result.history.from_stage, result.history.to_stage,
        result.history.changed_by,
    )
    return opp


async def transition(
    session: AsyncSession,
    catalog: StageCatalog,
    opportunity_id: str,
    action: str,
    changed_by: str | None,
    now: datetime | None = None,
    **kwargs,
) -> Opportunity:
    """Load, run one state-machine transition, and persist it.

    Raises:
        NotFound: unknown opportunity.
        ConflictError: precondition failed or a concurrent writer won.
        InvalidArgument: unknown action or bad transition arguments,
            or the stored row is inconsistent (status, stage, probability).
    """
    fn = _ACTIONS.get(action)
    if fn is None:
        raise InvalidArgument(f"Unknown transition: {action!r}")
    current = await get(session, opportunity_id)
    transitions.check_consistency(current, catalog)
    result = fn(current, catalog, changed_by, now or datetime.now(timezone.utc), **kwargs)
    return await apply_transition(session, result, expected_version=current.version)


def _live_in_scope(stmt, scope: OrgScope):
    stmt = stmt.where(
        OpportunityRow.is_deleted == False,  # noqa: E712
        OpportunityRow.status != STATUS_ARCHIVED,
    )
    if not scope.unrestricted:
        stmt = stmt.where(OpportunityRow.owner_id.in_(sorted(scope.owner_ids)))
    return stmt
