"""Performance scorer: cumulative stage points per opportunity and per rep.

Scoring rules:

* Open opportunity: points of every stage passed through, plus the current
  stage's points when the opportunity is still inside that stage's timeline.
* Terminal opportunity: only the terminal stage's points (same timeline gate).
  Closed Won earns its own points; Closed Lost earns whatever the catalog says,
  normally zero.

"Passed through" comes from the stage history when it is available.  Legacy
opportunities without history fall back to the catalog order of the current
stage, and the breakdown says so via ``from_history=False``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sales_pipeline.domain.records import Opportunity, Stage, StageHistoryEntry
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.domain.stage_clock import days_in_stage as _days_in_stage
from sales_pipeline.domain.stage_clock import entered_at_from_history
from sales_pipeline.domain.transitions import check_consistency


@dataclass
class ScoreBreakdown:
    """How a cumulative score was assembled."""
    opportunity_id: str
    stage: str
    passed_stages: list[str]
    passed_points: int
    current_points: int
    within_timeline: bool
    from_history: bool

    @property
    def total(self) -> int:
        return self.passed_points + self.current_points


@dataclass
class OwnerScore:
    """Aggregated score for one rep."""
    owner_id: str
    score: int
    opportunity_count: int
    rank: int = 0


def score_breakdown(
    opp: Opportunity,
    catalog: StageCatalog,
    history: Iterable[StageHistoryEntry] | None = None,
    days_in_stage: int | None = None,
    require_clock: bool = False,
) -> ScoreBreakdown:
    """Break an opportunity's score into passed-stage and current-stage points.

    With ``require_clock``, a stage that has a timeline but no days-in-stage
    reading earns no current-stage points.

    Raises:
        ConfigurationError: if the current stage, or any stage in the history,
            is missing from the catalog.
        InvalidArgument: if status, stage, and probability disagree.
    """
    check_consistency(opp, catalog)
    current = catalog.get(opp.stage)
    within = _within_timeline(current, days_in_stage, require_clock)
    current_points = current.points if within else 0
    history = list(history or [])

    if current.is_terminal:
        return ScoreBreakdown(
            opportunity_id=opp.id,
            stage=current.key,
            passed_stages=[],
            passed_points=0,
            current_points=current_points,
            within_timeline=within,
            from_history=bool(history),
        )

    current_idx = catalog.index_of(current.key)
    if history:
        visited: set[str] = set()
        for entry in history:
            for key in (entry.from_stage, entry.to_stage):
                if key is not None:
                    catalog.get(key)
                    visited.add(key)
        passed = [
            s for i, s in enumerate(catalog)
            if i < current_idx and not s.is_terminal and s.key in visited
        ]
    else:
        passed = [s for s in catalog.stages[:current_idx] if not s.is_terminal]

    return ScoreBreakdown(
        opportunity_id=opp.id,
        stage=current.key,
        passed_stages=[s.key for s in passed],
        passed_points=sum(s.points for s in passed),
        current_points=current_points,
        within_timeline=within,
        from_history=bool(history),
    )


def cumulative_score(
    opp: Opportunity,
    catalog: StageCatalog,
    history: Iterable[StageHistoryEntry] | None = None,
    days_in_stage: int | None = None,
) -> int:
    """Cumulative point score for one opportunity."""
    return score_breakdown(opp, catalog, history, days_in_stage).total


def rank_owners(
    opportunities: Iterable[Opportunity],
    catalog: StageCatalog,
    now: datetime,
    histories: dict[str, list[StageHistoryEntry]] | None = None,
) -> list[OwnerScore]:
    """Sum scores per owner and rank them, highest first (ties share a rank)."""
    histories = histories or {}
    totals: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)

    for opp in opportunities:
        history = histories.get(opp.id, [])
        entered = (
            entered_at_from_history(history, opp.stage)
            or opp.stage_entered_at
            or opp.created_at
        )
        days = _days_in_stage(entered, now) if entered is not None else None
        breakdown = score_breakdown(opp, catalog, history, days, require_clock=True)
        totals[opp.owner_id] += breakdown.total
        counts[opp.owner_id] += 1

    ranked = sorted(
        (OwnerScore(owner_id=o, score=totals[o], opportunity_count=counts[o]) for o in totals),
        key=lambda s: (-s.score, s.owner_id),
    )
    prev_score = None
    for position, entry in enumerate(ranked, start=1):
        entry.rank = ranked[position - 2].rank if entry.score == prev_score else position
        prev_score = entry.score
    return ranked


def _within_timeline(stage: Stage, days_in_stage: int | None, require_clock: bool) -> bool:
    if stage.default_due_days is None:
        return True
    if days_in_stage is None:
        return not require_clock
    return days_in_stage <= stage.default_due_days
