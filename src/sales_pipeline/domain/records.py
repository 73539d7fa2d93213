"""Typed records for pipeline entities, parsed from loosely-typed rows.

Query results come back as plain dicts (or ORM rows).  Everything that enters
the domain functions goes through one of the ``*_from_row`` parsers here so
bad data fails at the boundary instead of deep inside an aggregation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sales_pipeline.errors import InvalidArgument

# ---------------------------------------------------------------------------
# Enumerations (kept as plain strings, matching the stored column values)
# ---------------------------------------------------------------------------

CATEGORY_PIPELINE = "Pipeline"
CATEGORY_BEST_CASE = "Best Case"
CATEGORY_COMMIT = "Commit"
CATEGORY_CLOSED = "Closed"
FORECAST_CATEGORIES = (CATEGORY_PIPELINE, CATEGORY_BEST_CASE, CATEGORY_COMMIT, CATEGORY_CLOSED)

STATUS_OPEN = "open"
STATUS_WON = "won"
STATUS_LOST = "lost"
STATUS_ON_HOLD = "on_hold"
STATUS_ARCHIVED = "archived"
STATUSES = (STATUS_OPEN, STATUS_WON, STATUS_LOST, STATUS_ON_HOLD, STATUS_ARCHIVED)

MEASURE_REVENUE = "revenue"
MEASURE_MARGIN = "margin"
MEASURES = (MEASURE_REVENUE, MEASURE_MARGIN)

ROLE_ACCOUNT_MANAGER = "account_manager"
ROLE_MANAGER = "manager"
ROLE_HEAD = "head"
ROLE_ADMIN = "admin"
ROLES = (ROLE_ACCOUNT_MANAGER, ROLE_MANAGER, ROLE_HEAD, ROLE_ADMIN)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Stage:
    """One step of the sales pipeline."""
    key: str
    position: int
    default_probability: Decimal
    points: int
    is_won: bool = False
    is_lost: bool = False
    default_due_days: int | None = None  # None = no SLA for this stage
    forecast_category: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.is_won or self.is_lost


@dataclass
class Opportunity:
    """A sales deal as seen by the domain functions."""
    id: str
    owner_id: str
    stage: str
    amount: Decimal
    probability: Decimal
    forecast_category: str
    status: str = STATUS_OPEN
    currency: str = "IDR"
    name: str = ""
    stage_entered_at: datetime | None = None
    expected_close_date: date | None = None
    close_date: date | None = None
    margin: Decimal | None = None
    due_days_override: int | None = None
    loss_reason: str | None = None
    version: int = 1
    created_at: datetime | None = None


@dataclass(frozen=True)
class StageHistoryEntry:
    """Immutable record of one stage transition."""
    opportunity_id: str
    from_stage: str | None
    to_stage: str
    changed_at: datetime
    changed_by: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class SalesTarget:
    """A quota assigned to one user profile over an inclusive date range."""
    assigned_to: str
    amount: Decimal
    period_start: date
    period_end: date
    measure: str = MEASURE_REVENUE
    id: str | None = None


@dataclass(frozen=True)
class UserProfile:
    """Org-hierarchy links for one user."""
    id: str  # profile id (targets reference this)
    user_id: str  # auth user id (opportunities reference this)
    role: str
    full_name: str = ""
    department_id: str | None = None
    division_id: str | None = None
    manager_id: str | None = None  # profile id of direct manager
    head_id: str | None = None  # profile id of division head


@dataclass(frozen=True)
class OrgScope:
    """Users and target-assignee profiles visible to a viewer."""
    owner_ids: frozenset[str] = field(default_factory=frozenset)
    profile_ids: frozenset[str] = field(default_factory=frozenset)
    resolved_by: str = ""
    unrestricted: bool = False  # admin: no owner filter at all


# ---------------------------------------------------------------------------
# Boundary parsing helpers
# ---------------------------------------------------------------------------


def to_decimal(val: Any, name: str = "value") -> Decimal:
    """Convert a number-ish value to Decimal, raising InvalidArgument on failure."""
    if isinstance(val, Decimal):
        return val
    if val is None or isinstance(val, bool):
        raise InvalidArgument(f"{name} must be a number, got {val!r}")
    try:
        # str() avoids binary float artefacts (0.1 -> 0.1000000000000000055...)
        return Decimal(str(val))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"{name} must be a number, got {val!r}") from None


def to_date(val: Any, name: str = "date") -> date:
    """Parse an ISO date string, date, or datetime into a date."""
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    if isinstance(val, str):
        try:
            return date.fromisoformat(val[:10])
        except ValueError:
            pass
    raise InvalidArgument(f"{name} is not a valid date: {val!r}")


def to_datetime(val: Any, name: str = "timestamp") -> datetime:
    """Parse an ISO timestamp into an aware datetime (naive values are taken as UTC)."""
    if isinstance(val, datetime):
        dt = val
    elif isinstance(val, date):
        dt = datetime(val.year, val.month, val.day)
    elif isinstance(val, str):
        try:
            dt = datetime.fromisoformat(val.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidArgument(f"{name} is not a valid timestamp: {val!r}") from None
    else:
        raise InvalidArgument(f"{name} is not a valid timestamp: {val!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _optional(val: Any, parse, name: str):
    if val is None or val == "":
        return None
    return parse(val, name)


def _get(row: Any, key: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(key, default)
    return getattr(row, key, default)


# ---------------------------------------------------------------------------
# Row parsers
# ---------------------------------------------------------------------------


def stage_from_row(row: Any) -> Stage:
    key = _get(row, "key") or _get(row, "stage")
    if not key:
        raise InvalidArgument("stage row has no key")
    due = _get(row, "default_due_days")
    return Stage(
        key=str(key),
        position=int(_get(row, "position", 0) or 0),
        default_probability=to_decimal(_get(row, "default_probability", 0), "default_probability"),
        points=int(_get(row, "points", 0) or 0),
        is_won=bool(_get(row, "is_won", False)),
        is_lost=bool(_get(row, "is_lost", False)),
        default_due_days=int(due) if due is not None else None,
        forecast_category=_get(row, "forecast_category"),
    )


def opportunity_from_row(row: Any) -> Opportunity:
    """Parse an opportunity row.  ``amount`` and ``probability`` default to 0 when null."""
    opp_id = _get(row, "id")
    owner = _get(row, "owner_id")
    stage = _get(row, "stage")
    if opp_id is None or owner is None or not stage:
        raise InvalidArgument(f"opportunity row is missing id/owner_id/stage: {row!r}")
    status = _get(row, "status") or STATUS_OPEN
    if status not in STATUSES:
        raise InvalidArgument(f"unknown opportunity status: {status!r}")
    override = _get(row, "due_days_override")
    margin = _get(row, "margin")
    return Opportunity(
        id=str(opp_id),
        owner_id=str(owner),
        stage=str(stage),
        amount=to_decimal(_get(row, "amount") or 0, "amount"),
        probability=to_decimal(_get(row, "probability") or 0, "probability"),
        forecast_category=_get(row, "forecast_category") or CATEGORY_PIPELINE,
        status=status,
        currency=_get(row, "currency") or "IDR",
        name=_get(row, "name") or "",
        stage_entered_at=_optional(_get(row, "stage_entered_at"), to_datetime, "stage_entered_at"),
        expected_close_date=_optional(_get(row, "expected_close_date"), to_date, "expected_close_date"),
        close_date=_optional(_get(row, "close_date"), to_date, "close_date"),
        margin=to_decimal(margin, "margin") if margin is not None else None,
        due_days_override=int(override) if override is not None else None,
        loss_reason=_get(row, "loss_reason"),
        version=int(_get(row, "version", 1) or 1),
        created_at=_optional(_get(row, "created_at"), to_datetime, "created_at"),
    )


def history_from_row(row: Any) -> StageHistoryEntry:
    return StageHistoryEntry(
        opportunity_id=str(_get(row, "opportunity_id")),
        from_stage=_get(row, "from_stage"),
        to_stage=str(_get(row, "to_stage")),
        changed_at=to_datetime(_get(row, "changed_at"), "changed_at"),
        changed_by=_get(row, "changed_by"),
        note=_get(row, "note"),
    )


def target_from_row(row: Any) -> SalesTarget:
    measure = _get(row, "measure") or MEASURE_REVENUE
    if measure not in MEASURES:
        raise InvalidArgument(f"unknown target measure: {measure!r}")
    target_id = _get(row, "id")
    return SalesTarget(
        id=str(target_id) if target_id is not None else None,
        assigned_to=str(_get(row, "assigned_to")),
        amount=to_decimal(_get(row, "amount"), "amount"),
        measure=measure,
        period_start=to_date(_get(row, "period_start"), "period_start"),
        period_end=to_date(_get(row, "period_end"), "period_end"),
    )


def profile_from_row(row: Any) -> UserProfile:
    role = _get(row, "role")
    if role not in ROLES:
        raise InvalidArgument(f"unknown role: {role!r}")
    return UserProfile(
        id=str(_get(row, "id")),
        user_id=str(_get(row, "user_id")),
        role=role,
        full_name=_get(row, "full_name") or "",
        department_id=_get(row, "department_id"),
        division_id=_get(row, "division_id"),
        manager_id=_get(row, "manager_id"),
        head_id=_get(row, "head_id"),
    )
