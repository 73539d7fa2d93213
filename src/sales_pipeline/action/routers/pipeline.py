"""Pipeline routes: scoped opportunity lists, forecast summary, and stage transitions."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from sales_pipeline.action.dependencies import (
    Viewer,
    get_catalog,
    get_viewer,
    resolve_window,
    to_json,
)
from sales_pipeline.db.connection import get_session
from sales_pipeline.domain import transitions
from sales_pipeline.domain.forecast import forecast_summary
from sales_pipeline.domain.org_scope import narrow_to_owner
from sales_pipeline.domain.records import MEASURE_REVENUE
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.domain.target_rollup import rollup
from sales_pipeline.errors import NotFound
from sales_pipeline.store import opportunity_store, target_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])


class OpportunityCreate(BaseModel):
    name: str
    amount: Decimal = Field(ge=0)
    currency: Optional[str] = None
    expected_close_date: Optional[date] = None
    owner_id: Optional[str] = None  # defaults to the caller


class TransitionRequest(BaseModel):
    note: Optional[str] = None


class MarkWonRequest(TransitionRequest):
    close_date: Optional[date] = None


class MarkLostRequest(TransitionRequest):
    loss_reason: str


class ReopenRequest(TransitionRequest):
    to_stage: Optional[str] = None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/pipeline")
async def get_pipeline(
    period: Optional[str] = Query(default=None, description="M, Q or Y"),
    start: Optional[str] = None,
    end: Optional[str] = None,
    forecast_category: Optional[str] = None,
    owner_id: Optional[str] = None,
    adjustment: Decimal = Decimal(0),
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Opportunities in the viewer's scope plus the forecast for the window."""
    window_start, window_end = resolve_window(period, start, end)
    scope = viewer.scope
    if owner_id:
        scope = narrow_to_owner(scope, owner_id, viewer.profiles)

    opportunities = await opportunity_store.fetch_scoped(
        session, scope, window_start, window_end, forecast_category
    )
    targets = await target_store.fetch_overlapping(
        session, sorted(scope.profile_ids), window_start, window_end, MEASURE_REVENUE
    )
    summary = forecast_summary(
        opportunities,
        window_start,
        window_end,
        target=rollup(targets, window_start, window_end),
        adjustment_percent=adjustment,
    )
    # The period filter drops undated rows in SQL, so count them separately
    summary.excluded_no_close_date = await opportunity_store.count_without_close_date(
        session, scope, forecast_category
    )
    return {
        "scope": to_json(scope),
        "summary": to_json(summary),
        "opportunities": [
            {**to_json(o), "allowed_actions": transitions.allowed_actions(o)}
            for o in opportunities
        ],
    }


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/opportunities")
async def create_opportunity(
    body: OpportunityCreate,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Create an opportunity at the first stage of the catalog."""
    owner = body.owner_id or viewer.user_id
    if owner != viewer.user_id:
        narrow_to_owner(viewer.scope, owner, viewer.profiles)
    opp = await opportunity_store.create(
        session,
        catalog,
        owner_id=owner,
        name=body.name,
        amount=body.amount,
        currency=body.currency or settings.default_currency,
        expected_close_date=body.expected_close_date,
        created_by=viewer.user_id,
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/advance")
async def advance(
    opportunity_id: str,
    body: TransitionRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.ADVANCE, viewer.user_id, note=body.note
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/won")
async def won(
    opportunity_id: str,
    body: MarkWonRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.MARK_WON, viewer.user_id,
        close_date=body.close_date, note=body.note,
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/lost")
async def lost(
    opportunity_id: str,
    body: MarkLostRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.MARK_LOST, viewer.user_id,
        loss_reason=body.loss_reason, note=body.note,
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/reopen")
async def reopen(
    opportunity_id: str,
    body: ReopenRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.REOPEN, viewer.user_id,
        to_stage=body.to_stage, note=body.note,
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/hold")
async def hold(
    opportunity_id: str,
    body: TransitionRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.HOLD, viewer.user_id, note=body.note
    )
    return to_json(opp)


@router.post("/opportunities/{opportunity_id}/resume")
async def resume(
    opportunity_id: str,
    body: TransitionRequest,
    viewer: Viewer = Depends(get_viewer),
    catalog: StageCatalog = Depends(get_catalog),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await _check_visible(session, viewer, opportunity_id)
    opp = await opportunity_store.transition(
        session, catalog, opportunity_id, transitions.RESUME, viewer.user_id, note=body.note
    )
    return to_json(opp)


async def _check_visible(session: AsyncSession, viewer: Viewer, opportunity_id: str) -> None:
    """Out-of-scope opportunities look exactly like missing ones."""
    opp = await opportunity_store.get(session, opportunity_id)
    if not viewer.scope.unrestricted and opp.owner_id not in viewer.scope.owner_ids:
        raise NotFound(f"Opportunity {opportunity_id} not found")
