"""Forecast bucketer: weighted pipeline, category totals, and gap to target.

All money is Decimal.  Totals refuse to add amounts in different currencies;
conversion belongs to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from sales_pipeline.domain.records import (
    CATEGORY_BEST_CASE,
    CATEGORY_COMMIT,
    CATEGORY_PIPELINE,
    FORECAST_CATEGORIES,
    STATUS_ARCHIVED,
    STATUS_OPEN,
    STATUS_WON,
    Opportunity,
    to_date,
    to_decimal,
)
from sales_pipeline.errors import InvalidArgument

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


@dataclass
class ForecastSummary:
    """Headline forecast figures for one period and scope."""
    period_start: date
    period_end: date
    currency: str | None
    weighted_pipeline: Decimal
    commit: Decimal
    best_case: Decimal
    pipeline: Decimal
    closed_won: Decimal
    target: Decimal
    gap_to_target: Decimal
    opportunity_count: int
    excluded_no_close_date: int


def effective_probability(probability: Decimal, adjustment_percent: Decimal | int = 0) -> Decimal:
    """Probability plus a what-if adjustment, clamped into 0-100."""
    adjusted = to_decimal(probability, "probability") + to_decimal(adjustment_percent, "adjustment_percent")
    return min(max(adjusted, _ZERO), _HUNDRED)


def weighted_amount(opp: Opportunity, adjustment_percent: Decimal | int = 0) -> Decimal:
    """Risk-adjusted amount: ``amount * effective_probability / 100``."""
    if opp.amount < 0:
        raise InvalidArgument(f"Opportunity {opp.id} has a negative amount")
    return opp.amount * effective_probability(opp.probability, adjustment_percent) / _HUNDRED


def is_within_period(
    expected_close_date: date | str | None,
    period_start: date | str,
    period_end: date | str,
) -> bool:
    """Inclusive date comparison.  A missing close date is never in any period."""
    if expected_close_date is None:
        return False
    start = to_date(period_start, "period_start")
    end = to_date(period_end, "period_end")
    if end < start:
        raise InvalidArgument(f"period_end {end} is before period_start {start}")
    return start <= to_date(expected_close_date, "expected_close_date") <= end


def in_period(
    opportunities: Iterable[Opportunity],
    period_start: date | str,
    period_end: date | str,
) -> list[Opportunity]:
    return [
        o for o in opportunities
        if is_within_period(o.expected_close_date, period_start, period_end)
    ]


def bucket_total(
    opportunities: Iterable[Opportunity],
    category: str,
    period_start: date | str,
    period_end: date | str,
) -> Decimal:
    """Sum raw ``amount`` of in-period opportunities in ``category``."""
    if category not in FORECAST_CATEGORIES:
        raise InvalidArgument(f"Unknown forecast category: {category!r}")
    matching = [
        o for o in in_period(opportunities, period_start, period_end)
        if o.forecast_category == category
    ]
    return _sum_amounts(matching)


def weighted_pipeline(
    opportunities: Iterable[Opportunity],
    adjustment_percent: Decimal | int = 0,
) -> Decimal:
    """Sum of weighted amounts over open opportunities."""
    open_opps = [o for o in opportunities if o.status == STATUS_OPEN]
    _check_currency(open_opps)
    return sum((weighted_amount(o, adjustment_percent) for o in open_opps), _ZERO)


def forecast_summary(
    opportunities: Iterable[Opportunity],
    period_start: date | str,
    period_end: date | str,
    target: Decimal | int = 0,
    adjustment_percent: Decimal | int = 0,
) -> ForecastSummary:
    """Weighted pipeline, per-category totals, and the gap between target and commit."""
    start = to_date(period_start, "period_start")
    end = to_date(period_end, "period_end")
    target_amount = to_decimal(target, "target")

    candidates = [o for o in opportunities if o.status != STATUS_ARCHIVED]
    scoped = in_period(candidates, start, end)
    currency = _check_currency(scoped)

    commit = bucket_total(scoped, CATEGORY_COMMIT, start, end)
    won = _sum_amounts([o for o in scoped if o.status == STATUS_WON])

    return ForecastSummary(
        period_start=start,
        period_end=end,
        currency=currency,
        weighted_pipeline=weighted_pipeline(scoped, adjustment_percent),
        commit=commit,
        best_case=bucket_total(scoped, CATEGORY_BEST_CASE, start, end),
        pipeline=bucket_total(scoped, CATEGORY_PIPELINE, start, end),
        closed_won=won,
        target=target_amount,
        gap_to_target=max(_ZERO, target_amount - commit),
        opportunity_count=len(scoped),
        excluded_no_close_date=sum(1 for o in candidates if o.expected_close_date is None),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _check_currency(opportunities: list[Opportunity]) -> str | None:
    currencies = {o.currency for o in opportunities}
    if len(currencies) > 1:
        raise InvalidArgument(
            f"Cannot total amounts in mixed currencies: {', '.join(sorted(currencies))}"
        )
    return next(iter(currencies)) if currencies else None


def _sum_amounts(opportunities: list[Opportunity]) -> Decimal:
    _check_currency(opportunities)
    return sum((o.amount for o in opportunities), _ZERO)
