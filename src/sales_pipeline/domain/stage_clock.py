"""Stage clock: days-in-stage, overdue checks, and stage SLA metrics.

Pure functions.  One rounding rule everywhere: days are the ceiling of the
elapsed time, and clock skew (entered in the future) counts as zero days.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from sales_pipeline.domain.records import Opportunity, Stage, StageHistoryEntry, to_date, to_datetime
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.errors import InvalidArgument

_SECONDS_PER_DAY = 86400


@dataclass
class StageClockReading:
    """Clock state for a single opportunity."""
    opportunity_id: str
    owner_id: str
    stage: str
    days_in_stage: int
    due_days: int | None
    is_overdue: bool
    points: int
    due_date: date | None = None
    days_remaining: int | None = None


@dataclass
class StageMetricsSummary:
    """Aggregate SLA figures over a set of opportunities."""
    readings: list[StageClockReading]
    overdue_count: int
    avg_days_in_stage: int
    total_points: int


def days_in_stage(stage_entered_at: datetime | str, now: datetime | str) -> int:
    """Whole days spent in the current stage (ceiling, never negative)."""
    entered = to_datetime(stage_entered_at, "stage_entered_at")
    current = to_datetime(now, "now")
    elapsed = (current - entered).total_seconds()
    if elapsed <= 0:
        return 0
    return math.ceil(elapsed / _SECONDS_PER_DAY)


def effective_due_days(default_due_days: int, override_due_days: int | None = None) -> int:
    """Per-opportunity override wins over the stage default."""
    due = override_due_days if override_due_days is not None else default_due_days
    if due < 0:
        raise InvalidArgument(f"due days must be non-negative, got {due}")
    return due


def is_overdue(days: int, default_due_days: int, override_due_days: int | None = None) -> bool:
    """True iff ``days`` is strictly greater than the effective due days."""
    if days < 0:
        raise InvalidArgument(f"days_in_stage must be non-negative, got {days}")
    if default_due_days < 0:
        raise InvalidArgument(f"default_due_days must be non-negative, got {default_due_days}")
    return days > effective_due_days(default_due_days, override_due_days)


def days_until(due_date: date | str, today: date | str) -> int:
    """Calendar days from ``today`` until ``due_date``; negative once past due."""
    return (to_date(due_date, "due_date") - to_date(today, "today")).days


def entered_at_from_history(
    history: Iterable[StageHistoryEntry], stage: str
) -> datetime | None:
    """Most recent time the opportunity moved into ``stage``, from the audit trail."""
    entered = [h.changed_at for h in history if h.to_stage == stage]
    return max(entered) if entered else None


def read_clock(
    opp: Opportunity,
    stage: Stage,
    now: datetime,
    history: Iterable[StageHistoryEntry] | None = None,
    fallback_due_days: int | None = None,
) -> StageClockReading:
    """Compute the stage clock for one opportunity.

    The history trail takes precedence over ``stage_entered_at`` when it has an
    entry for the current stage.  Without either, ``created_at`` is used.
    When a timeline applies, the reading also carries the due date and the
    calendar days left until it (negative once past due).

    Raises:
        InvalidArgument: if no entry timestamp can be determined at all.
    """
    entered = entered_at_from_history(history, opp.stage) if history else None
    if entered is None:
        entered = opp.stage_entered_at or opp.created_at
    if entered is None:
        raise InvalidArgument(f"Opportunity {opp.id} has no stage entry timestamp")

    days = days_in_stage(entered, now)
    default_due = stage.default_due_days if stage.default_due_days is not None else fallback_due_days
    if default_due is None and opp.due_days_override is None:
        due, overdue = None, False
        due_date = remaining = None
    else:
        base = default_due if default_due is not None else opp.due_days_override
        due = effective_due_days(base, opp.due_days_override)
        overdue = is_overdue(days, base, opp.due_days_override)
        due_date = (to_datetime(entered, "stage_entered_at") + timedelta(days=due)).date()
        remaining = days_until(due_date, to_datetime(now, "now").date())

    return StageClockReading(
        opportunity_id=opp.id,
        owner_id=opp.owner_id,
        stage=opp.stage,
        days_in_stage=days,
        due_days=due,
        is_overdue=overdue,
        points=stage.points,
        due_date=due_date,
        days_remaining=remaining,
    )


def summarize_stage_metrics(
    opportunities: Iterable[Opportunity],
    catalog: StageCatalog,
    now: datetime,
    histories: dict[str, list[StageHistoryEntry]] | None = None,
    fallback_due_days: int | None = None,
) -> StageMetricsSummary:
    """Overdue count, average days in stage, and total stage points."""
    histories = histories or {}
    readings = [
        read_clock(
            opp,
            catalog.get(opp.stage),
            now,
            histories.get(opp.id),
            fallback_due_days,
        )
        for opp in opportunities
    ]
    if not readings:
        return StageMetricsSummary(readings=[], overdue_count=0, avg_days_in_stage=0, total_points=0)

    total_days = sum(r.days_in_stage for r in readings)
    return StageMetricsSummary(
        readings=readings,
        overdue_count=sum(1 for r in readings if r.is_overdue),
        avg_days_in_stage=round(total_days / len(readings)),
        total_points=sum(r.points for r in readings),
    )
