"""Dashboard routes: achievement, leaderboard, and stage SLA metrics."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from sales_pipeline.action.dependencies import Viewer, get_catalog, get_viewer, resolve_window, to_json
from sales_pipeline.db.connection import get_session
from sales_pipeline.domain.org_scope import narrow_to_owner
from sales_pipeline.domain.records import MEASURE_REVENUE, STATUS_OPEN
from sales_pipeline.domain.scoring import rank_owners
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.domain.stage_clock import summarize_stage_metrics
from sales_pipeline.domain.target_rollup import target_achievement
from sales_pipeline.store import opportunity_store, target_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/achievement")
async def achievement(
    period: Optional[str] = Query(default=None, description="M, Q or Y"),
    start: Optional[str] = None,
    end: Optional[str] = None,
    measure: str = MEASURE_REVENUE,
    owner_id: Optional[str] = None,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Target vs closed actuals for the viewer's scope (or one rep in it)."""
    window_start, window_end = resolve_window(period, start, end)
    scope = viewer.scope
    if owner_id:
        scope = narrow_to_owner(scope, owner_id, viewer.profiles)

    targets = await target_store.fetch_overlapping(
        session, sorted(scope.profile_ids), window_start, window_end, measure
    )
    # Actuals go by close date, so no expected-close filter here
    opportunities = await opportunity_store.fetch_scoped(session, scope)
    result = target_achievement(
        targets, opportunities, window_start, window_end, measure, catalog
    )
    return to_json(result)


@router.get("/leaderboard")
async def leaderboard(
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> list[dict]:
    """Reps in scope ranked by cumulative stage points."""
    opportunities = await opportunity_store.fetch_scoped(session, viewer.scope)
    histories = await opportunity_store.fetch_history(session, [o.id for o in opportunities])
    ranked = rank_owners(opportunities, catalog, datetime.now(timezone.utc), histories)

    names = {p.user_id: p.full_name for p in viewer.profiles}
    rows = []
    for entry in ranked:
        row = to_json(entry)
        row["full_name"] = names.get(entry.owner_id, "")
        rows.append(row)
    return rows


@router.get("/stage-metrics")
async def stage_metrics(
    owner_id: Optional[str] = None,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Overdue count, average days in stage, and points for open deals in scope."""
    scope = viewer.scope
    if owner_id:
        scope = narrow_to_owner(scope, owner_id, viewer.profiles)

    opportunities = [
        o for o in await opportunity_store.fetch_scoped(session, scope)
        if o.status == STATUS_OPEN
    ]
    histories = await opportunity_store.fetch_history(session, [o.id for o in opportunities])
    summary = summarize_stage_metrics(
        opportunities,
        catalog,
        datetime.now(timezone.utc),
        histories,
        fallback_due_days=settings.default_due_days,
    )
    return to_json(summary)
