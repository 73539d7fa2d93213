"""User profile reads for org-hierarchy scope resolution."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sales_pipeline.db.models import UserProfileRow
from sales_pipeline.domain.org_scope import resolve_scope
from sales_pipeline.domain.records import OrgScope, UserProfile, profile_from_row
from sales_pipeline.errors import NotFound

logger = logging.getLogger(__name__)


async def get_all(session: AsyncSession) -> list[UserProfile]:
    try:
        result = await session.execute(select(UserProfileRow))
        return [profile_from_row(r) for r in result.scalars().all()]
    except Exception:
        logger.exception("Failed to fetch user profiles")
        await session.rollback()
        raise


async def get_by_user_id(session: AsyncSession, user_id: str) -> UserProfile:
    try:
        result = await session.execute(
            select(UserProfileRow).where(UserProfileRow.user_id == user_id)
        )
        row = result.scalar_one_or_none()
    except Exception:
        logger.exception("Failed to fetch profile for user: %s", user_id)
        await session.rollback()
        raise
    if row is None:
        raise NotFound(f"No profile for user {user_id}")
    return profile_from_row(row)


async def resolve_viewer_scope(
    session: AsyncSession,
    user_id: str,
    include_unassigned: bool = False,
) -> tuple[UserProfile, OrgScope, list[UserProfile]]:
    """Load the viewer and the hierarchy, then resolve the viewer's scope.

    Recomputed on every request; nothing is cached.
    """
    viewer = await get_by_user_id(session, user_id)
    profiles = await get_all(session)
    scope = resolve_scope(viewer, profiles, include_unassigned=include_unassigned)
    logger.debug(
        "Scope for %s (%s): %d owners via %s",
        user_id, viewer.role, len(scope.owner_ids), scope.resolved_by,
    )
    return viewer, scope, profiles
