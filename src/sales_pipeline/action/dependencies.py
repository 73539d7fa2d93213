"""Shared dependencies for API routers: viewer identity, scope, catalog, serialisation."""

import dataclasses
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from sales_pipeline.db.connection import get_session
from sales_pipeline.domain.periods import PERIOD_QUARTER, period_range
from sales_pipeline.domain.records import OrgScope, UserProfile
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.store import profile_store, stage_store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FastAPI Dependencies
# ---------------------------------------------------------------------------


class Viewer:
    """The authenticated user together with their resolved org scope."""

    def __init__(self, profile: UserProfile, scope: OrgScope, profiles: list[UserProfile]):
        self.profile = profile
        self.scope = scope
        self.profiles = profiles

    @property
    def user_id(self) -> str:
        return self.profile.user_id


async def get_viewer(
    x_user_id: str = Header(default=""),
    session: AsyncSession = Depends(get_session),
) -> Viewer:
    """Resolve the caller from the ``X-User-Id`` header set by the auth gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    profile, scope, profiles = await profile_store.resolve_viewer_scope(
        session, x_user_id, include_unassigned=settings.scope_unassigned_fallback
    )
    return Viewer(profile, scope, profiles)


def require_role(*roles: str):
    """Dependency that only lets the listed roles through."""

    async def check(viewer: Viewer = Depends(get_viewer)) -> Viewer:
        if viewer.profile.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Requires one of {list(roles)}. You have '{viewer.profile.role}'.",
            )
        return viewer

    return check


async def get_catalog(session: AsyncSession = Depends(get_session)) -> StageCatalog:
    return await stage_store.load_catalog(session)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------


def to_json(value: Any) -> Any:
    """Convert dataclasses, Decimals, and dates into JSON-friendly values.

    Decimals become strings so money keeps its precision on the wire.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_json(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (frozenset, set)):
        return sorted(to_json(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    return value


def parse_optional_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD") from None


def resolve_window(
    period: Optional[str], start: Optional[str], end: Optional[str], today: Optional[date] = None
) -> tuple[date, date]:
    """Explicit ``start``/``end`` win; otherwise the current M/Q/Y period (default quarter)."""
    start_d = parse_optional_date(start, "start")
    end_d = parse_optional_date(end, "end")
    if start_d and end_d:
        return start_d, end_d
    if start_d or end_d:
        raise HTTPException(status_code=400, detail="start and end must be given together")
    return period_range(period or PERIOD_QUARTER, today or date.today())
