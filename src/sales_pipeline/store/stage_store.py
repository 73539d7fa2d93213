"""Stage catalog persistence."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.db.models import StageSetting
from sales_pipeline.domain.records import Stage, stage_from_row
from sales_pipeline.domain.stage_catalog import StageCatalog, default_catalog
from sales_pipeline.errors import InvalidArgument, NotFound

logger = logging.getLogger(__name__)


async def get_all(session: AsyncSession) -> list[StageSetting]:
    try:
        result = await session.execute(select(StageSetting).order_by(StageSetting.position))
        return list(result.scalars().all())
    except Exception:
        logger.exception("Failed to fetch stage settings")
        await session.rollback()
        raise


async def load_catalog(session: AsyncSession) -> StageCatalog:
    """Build the validated catalog from ``stage_settings``.

    An empty table means the catalog was never seeded; the shipped default is
    used in that case.  A populated but inconsistent table raises
    ConfigurationError from the catalog constructor.
    """
    rows = await get_all(session)
    if not rows:
        logger.warning("stage_settings is empty, using the default stage catalog")
        return default_catalog()
    return StageCatalog(stage_from_row(r) for r in rows)


async def get_by_key(session: AsyncSession, key: str) -> StageSetting | None:
    try:
        result = await session.execute(select(StageSetting).where(StageSetting.key == key))
        return result.scalar_one_or_none()
    except Exception:
        logger.exception("Failed to fetch stage setting: %s", key)
        await session.rollback()
        raise


async def upsert(session: AsyncSession, stage: Stage) -> StageSetting:
    try:
        existing = await get_by_key(session, stage.key)
        if existing is None:
            existing = StageSetting(key=stage.key)
            session.add(existing)
        existing.position = stage.position
        existing.default_probability = stage.default_probability
        existing.points = stage.points
        existing.default_due_days = stage.default_due_days
        existing.forecast_category = stage.forecast_category
        existing.is_won = stage.is_won
        existing.is_lost = stage.is_lost
        await session.commit()
        await session.refresh(existing)
        return existing
    except Exception:
        logger.exception("Failed to upsert stage setting: %s", stage.key)
        await session.rollback()
        raise


async def update_settings(
    session: AsyncSession,
    key: str,
    default_due_days: int | None = None,
    points: int | None = None,
) -> StageSetting:
    """Edit the admin-tunable fields of one stage (due days and points)."""
    if default_due_days is not None and default_due_days < 0:
        raise InvalidArgument("default_due_days must be non-negative")
    if points is not None and points < 0:
        raise InvalidArgument("points must be non-negative")

    setting = await get_by_key(session, key)
    if setting is None:
        raise NotFound(f"Stage '{key}' not found")
    try:
        if default_due_days is not None:
            setting.default_due_days = default_due_days
        if points is not None:
            setting.points = points
        await session.commit()
        await session.refresh(setting)
        logger.info("Updated stage %s: due_days=%s points=%s", key, setting.default_due_days, setting.points)
        return setting
    except Exception:
        logger.exception("Failed to update stage setting: %s", key)
        await session.rollback()
        raise
