"""Stage catalog routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.action.dependencies import Viewer, get_catalog, require_role, to_json
from sales_pipeline.db.connection import get_session
from sales_pipeline.domain.records import ROLE_ADMIN, stage_from_row
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.store import stage_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stages"])


class StageSettingsUpdate(BaseModel):
    default_due_days: Optional[int] = None
    points: Optional[int] = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/stages")
async def list_stages(catalog: StageCatalog = Depends(get_catalog)) -> list[dict]:
    """The ordered stage catalog."""
    return [to_json(s) for s in catalog]


@router.patch("/stages/{key}")
async def update_stage(
    key: str,
    body: StageSettingsUpdate,
    viewer: Viewer = Depends(require_role(ROLE_ADMIN)),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Admin edit of a stage's due days and points."""
    row = await stage_store.update_settings(
        session, key, default_due_days=body.default_due_days, points=body.points
    )
    logger.info("Stage %s edited by %s", key, viewer.user_id)
    return to_json(stage_from_row(row))
