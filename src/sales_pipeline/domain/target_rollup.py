"""Target rollup engine: pro-rata target apportionment and achievement.

Targets are defined over arbitrary inclusive date ranges (a month, a quarter,
half a year).  A reporting window receives a share of each target equal to
the number of calendar months the two ranges share, divided by the number of
months the target spans.  The granularity is calendar months, not days: a
3-month target fully inside a quarter contributes all of its amount, and a
one-month target queried with a one-day window still contributes 1/1.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sales_pipeline.domain.periods import months_inclusive
from sales_pipeline.domain.records import (
    MEASURE_MARGIN,
    MEASURE_REVENUE,
    MEASURES,
    STATUS_WON,
    Opportunity,
    SalesTarget,
    to_date,
    to_decimal,
)
from sales_pipeline.domain.stage_catalog import StageCatalog
from sales_pipeline.domain.transitions import check_consistency
from sales_pipeline.errors import InvalidArgument

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


@dataclass
class TargetContribution:
    """Share of one target that falls inside the reporting window."""
    target: SalesTarget
    total_months: int
    overlap_months: int
    contribution: Decimal


@dataclass
class Achievement:
    """Target vs actual for one scope, window, and measure."""
    measure: str
    window_start: date
    window_end: date
    target: Decimal
    actual: Decimal
    achievement_pct: Decimal
    gap: Decimal  # remaining to target, never negative
    contributions: list[TargetContribution]


def validate_target(target: SalesTarget) -> None:
    """Raise InvalidArgument unless the target is well-formed."""
    if target.period_end < target.period_start:
        raise InvalidArgument(
            f"Target period_end {target.period_end} is before period_start {target.period_start}"
        )
    if target.amount < 0:
        raise InvalidArgument(f"Target amount must be non-negative, got {target.amount}")
    if target.measure not in MEASURES:
        raise InvalidArgument(f"Unknown target measure: {target.measure!r}")


def contribution(target: SalesTarget, window_start: date | str, window_end: date | str) -> TargetContribution:
    """Apportion a single target into ``[window_start, window_end]``."""
    validate_target(target)
    start, end = _window(window_start, window_end)

    total_months = months_inclusive(target.period_start, target.period_end)
    overlap_start = max(target.period_start, start)
    overlap_end = min(target.period_end, end)
    if overlap_end < overlap_start:
        return TargetContribution(target, total_months, 0, _ZERO)

    overlap_months = months_inclusive(overlap_start, overlap_end)
    share = target.amount * Decimal(overlap_months) / Decimal(total_months)
    return TargetContribution(target, total_months, overlap_months, share)


def rollup(
    targets: Iterable[SalesTarget],
    window_start: date | str,
    window_end: date | str,
) -> Decimal:
    """Total target amount apportioned into the window."""
    return sum(
        (contribution(t, window_start, window_end).contribution for t in targets),
        _ZERO,
    )


def achievement_percent(actual: Decimal | int, target: Decimal | int) -> Decimal:
    """``actual / target * 100``; a zero target yields 0, never a division error."""
    actual_d = to_decimal(actual, "actual")
    target_d = to_decimal(target, "target")
    if target_d < 0:
        raise InvalidArgument(f"target must be non-negative, got {target_d}")
    if target_d == 0:
        return _ZERO
    return actual_d / target_d * _HUNDRED


def actual_closed(
    opportunities: Iterable[Opportunity],
    measure: str,
    window_start: date | str,
    window_end: date | str,
    catalog: StageCatalog | None = None,
) -> Decimal:
    """Won revenue (or margin) with a close date inside the window.

    Won deals without a close date fall back to their expected close date;
    deals with neither are left out.  Given a ``catalog``, every row is
    checked for status/stage/probability agreement first
    (``InvalidArgument`` otherwise).
    """
    if measure not in MEASURES:
        raise InvalidArgument(f"Unknown measure: {measure!r}")
    start, end = _window(window_start, window_end)

    total = _ZERO
    for opp in opportunities:
        if catalog is not None:
            check_consistency(opp, catalog)
        if opp.status != STATUS_WON:
            continue
        closed_on = opp.close_date or opp.expected_close_date
        if closed_on is None or not start <= closed_on <= end:
            continue
        if measure == MEASURE_REVENUE:
            total += opp.amount
        elif opp.margin is not None:
            total += opp.margin
    return total


def target_achievement(
    targets: Iterable[SalesTarget],
    opportunities: Iterable[Opportunity],
    window_start: date | str,
    window_end: date | str,
    measure: str = MEASURE_REVENUE,
    catalog: StageCatalog | None = None,
) -> Achievement:
    """Roll up targets of ``measure`` and compare them with closed actuals."""
    if measure not in (MEASURE_REVENUE, MEASURE_MARGIN):
        raise InvalidArgument(f"Unknown measure: {measure!r}")
    start, end = _window(window_start, window_end)

    contributions = [
        contribution(t, start, end) for t in targets if t.measure == measure
    ]
    target_total = sum((c.contribution for c in contributions), _ZERO)
    actual = actual_closed(opportunities, measure, start, end, catalog)

    return Achievement(
        measure=measure,
        window_start=start,
        window_end=end,
        target=target_total,
        actual=actual,
        achievement_pct=achievement_percent(actual, target_total),
        gap=max(_ZERO, target_total - actual),
        contributions=contributions,
    )


def _window(window_start: date | str, window_end: date | str) -> tuple[date, date]:
    start = to_date(window_start, "window_start")
    end = to_date(window_end, "window_end")
    if end < start:
        raise InvalidArgument(f"window_end {end} is before window_start {start}")
    return start, end
