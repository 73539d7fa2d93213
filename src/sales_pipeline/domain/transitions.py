"""Opportunity stage state machine.

Every transition is a pure function: it checks the preconditions against the
current opportunity, then returns the updated opportunity together with the
history entry to append.  Persisting both atomically is the store's job.

Allowed moves (by status):

    open     -> advance (next open stage), won, lost, hold
    on_hold  -> resume, won, lost
    lost     -> reopen
    won      -> (terminal)
    archived -> (terminal)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sales_pipeline.domain.records import (
    CATEGORY_CLOSED,
    STATUS_LOST,
    STATUS_ON_HOLD,
    STATUS_OPEN,
    STATUS_WON,
    Opportunity,
    StageHistoryEntry,
)
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.errors import ConflictError, InvalidArgument

ADVANCE = "advance"
MARK_WON = "mark_won"
MARK_LOST = "mark_lost"
REOPEN = "reopen"
HOLD = "hold"
RESUME = "resume"

VALID_TRANSITIONS = {
    STATUS_OPEN: [ADVANCE, MARK_WON, MARK_LOST, HOLD],
    STATUS_ON_HOLD: [RESUME, MARK_WON, MARK_LOST],
    STATUS_LOST: [REOPEN],
    STATUS_WON: [],
    "archived": [],
}


@dataclass
class TransitionResult:
    """Outcome of a transition: the new opportunity state and its audit entry."""
    action: str
    opportunity: Opportunity
    history: StageHistoryEntry


def allowed_actions(opp: Opportunity) -> list[str]:
    return list(VALID_TRANSITIONS.get(opp.status, []))


def check_consistency(opp: Opportunity, catalog: StageCatalog) -> None:
    """Status, stage, and probability must agree for won and lost deals."""
    stage = catalog.get(opp.stage)
    if opp.status == STATUS_WON and (not stage.is_won or opp.probability != 100):
        raise InvalidArgument(
            f"Opportunity {opp.id} is won but sits in '{opp.stage}' at {opp.probability}%"
        )
    if opp.status == STATUS_LOST and (not stage.is_lost or opp.probability != 0):
        raise InvalidArgument(
            f"Opportunity {opp.id} is lost but sits in '{opp.stage}' at {opp.probability}%"
        )
    if opp.status in (STATUS_OPEN, STATUS_ON_HOLD) and stage.is_terminal:
        raise InvalidArgument(f"Opportunity {opp.id} is {opp.status} but in terminal stage '{opp.stage}'")


def initial_fields(catalog: StageCatalog, now: datetime) -> dict:
    """Stage-related fields for a freshly created opportunity."""
    first = catalog.initial_stage
    return {
        "stage": first.key,
        "probability": first.default_probability,
        "forecast_category": catalog.default_category_for(first.key),
        "status": STATUS_OPEN,
        "stage_entered_at": now,
    }


def advance_stage(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    note: str | None = None,
) -> TransitionResult:
    """Move forward to the next open stage in catalog order."""
    _require(opp, ADVANCE)
    nxt = catalog.next_stage(opp.stage)
    if nxt is None:
        raise ConflictError(f"Opportunity {opp.id} is already at the final open stage '{opp.stage}'")
    updated = dataclasses.replace(
        opp,
        stage=nxt.key,
        probability=nxt.default_probability,
        forecast_category=catalog.default_category_for(nxt.key),
        stage_entered_at=now,
    )
    return _result(ADVANCE, opp, updated, changed_by, now, note)


def mark_won(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    close_date: date | None = None,
    note: str | None = None,
) -> TransitionResult:
    """Close the deal as won: probability 100, close date recorded."""
    _require(opp, MARK_WON)
    won = catalog.won_stage
    updated = dataclasses.replace(
        opp,
        stage=won.key,
        status=STATUS_WON,
        probability=Decimal(100),
        forecast_category=CATEGORY_CLOSED,
        stage_entered_at=now,
        close_date=close_date or now.date(),
    )
    return _result(MARK_WON, opp, updated, changed_by, now, note)


def mark_lost(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    loss_reason: str,
    note: str | None = None,
) -> TransitionResult:
    """Close the deal as lost.  A loss reason is mandatory."""
    if not loss_reason or not loss_reason.strip():
        raise InvalidArgument("A loss reason is required to mark an opportunity lost")
    _require(opp, MARK_LOST)
    lost = catalog.lost_stage
    updated = dataclasses.replace(
        opp,
        stage=lost.key,
        status=STATUS_LOST,
        probability=Decimal(0),
        forecast_category=CATEGORY_CLOSED,
        stage_entered_at=now,
        close_date=now.date(),
        loss_reason=loss_reason.strip(),
    )
    return _result(MARK_LOST, opp, updated, changed_by, now, note or loss_reason.strip())


def reopen(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    to_stage: str | None = None,
    note: str | None = None,
) -> TransitionResult:
    """Bring a lost deal back into the pipeline at an open stage (default: the first)."""
    _require(opp, REOPEN)
    target = catalog.get(to_stage) if to_stage else catalog.initial_stage
    if target.is_terminal:
        raise InvalidArgument(f"Cannot reopen into terminal stage '{target.key}'")
    updated = dataclasses.replace(
        opp,
        stage=target.key,
        status=STATUS_OPEN,
        probability=target.default_probability,
        forecast_category=catalog.default_category_for(target.key),
        stage_entered_at=now,
        close_date=None,
        loss_reason=None,
    )
    return _result(REOPEN, opp, updated, changed_by, now, note)


def hold(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    note: str | None = None,
) -> TransitionResult:
    _require(opp, HOLD)
    catalog.get(opp.stage)
    updated = dataclasses.replace(opp, status=STATUS_ON_HOLD)
    return _result(HOLD, opp, updated, changed_by, now, note or "Put on hold")


def resume(
    opp: Opportunity,
    catalog: StageCatalog,
    changed_by: str | None,
    now: datetime,
    note: str | None = None,
) -> TransitionResult:
    _require(opp, RESUME)
    catalog.get(opp.stage)
    updated = dataclasses.replace(opp, status=STATUS_OPEN)
    return _result(RESUME, opp, updated, changed_by, now, note or "Resumed")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _require(opp: Opportunity, action: str) -> None:
    if action not in VALID_TRANSITIONS.get(opp.status, []):
        raise ConflictError(
            f"Cannot {action.replace('_', ' ')} opportunity {opp.id} in status '{opp.status}'. "
            f"Allowed: {VALID_TRANSITIONS.get(opp.status, [])}"
        )


def _result(
    action: str,
    before: Opportunity,
    after: Opportunity,
    changed_by: str | None,
    now: datetime,
    note: str | None,
) -> TransitionResult:
    after.version = before.version + 1
    entry = StageHistoryEntry(
        opportunity_id=before.id,
        from_stage=before.stage,
        to_stage=after.stage,
        changed_at=now,
        changed_by=changed_by,
        note=note,
    )
    return TransitionResult(action=action, opportunity=after, history=entry)
