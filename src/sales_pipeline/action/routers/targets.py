"""Sales target routes."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.action.dependencies import Viewer, get_viewer, require_role, resolve_window, to_json
from sales_pipeline.db.connection import get_session
from sales_pipeline.domain.records import (
    MEASURE_REVENUE,
    ROLE_ADMIN,
    ROLE_HEAD,
    ROLE_MANAGER,
    SalesTarget,
)
from sales_pipeline.domain.target_rollup import contribution
from sales_pipeline.store import target_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["targets"])


class TargetCreate(BaseModel):
    assigned_to: str  # profile id
    amount: Decimal = Field(ge=0)
    measure: str = MEASURE_REVENUE
    period_start: date
    period_end: date


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/targets")
async def create_target(
    body: TargetCreate,
    viewer: Viewer = Depends(require_role(ROLE_MANAGER, ROLE_HEAD, ROLE_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """A superior sets a target for someone in their scope (never for themselves)."""
    if body.assigned_to == viewer.profile.id:
        raise HTTPException(status_code=403, detail="Targets are set by a superior, not by the assignee")
    if not viewer.scope.unrestricted and body.assigned_to not in viewer.scope.profile_ids:
        raise HTTPException(status_code=403, detail="Assignee is outside your scope")

    target = await target_store.create(
        session,
        SalesTarget(
            assigned_to=body.assigned_to,
            amount=body.amount,
            measure=body.measure,
            period_start=body.period_start,
            period_end=body.period_end,
        ),
        created_by=viewer.profile.id,
    )
    return to_json(target)


@router.get("/targets")
async def list_targets(
    period: Optional[str] = Query(default=None, description="M, Q or Y"),
    start: Optional[str] = None,
    end: Optional[str] = None,
    measure: Optional[str] = None,
    viewer: Viewer = Depends(get_viewer),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Targets touching the window, each with its apportioned share."""
    window_start, window_end = resolve_window(period, start, end)
    targets = await target_store.fetch_overlapping(
        session, sorted(viewer.scope.profile_ids), window_start, window_end, measure
    )
    shares = [contribution(t, window_start, window_end) for t in targets]
    return {
        "window_start": window_start.isoformat(),
        "window_end": window_end.isoformat(),
        "targets": to_json(shares),
        "total": to_json(sum((s.contribution for s in shares), Decimal(0))),
    }
