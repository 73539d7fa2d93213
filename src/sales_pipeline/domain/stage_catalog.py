"""Stage catalog: ordered pipeline stages with probability, points, and SLA.

The catalog is validated once on construction; every lookup afterwards can
rely on exactly one won stage, exactly one lost stage, and unique keys.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sales_pipeline.domain.records import (
    CATEGORY_BEST_CASE,
    CATEGORY_CLOSED,
    CATEGORY_COMMIT,
    CATEGORY_PIPELINE,
    FORECAST_CATEGORIES,
    Stage,
)
from sales_pipeline.errors import ConfigurationError

# (key, probability %, points, due days, forecast category)
_DEFAULT_STAGES = [
    ("Prospecting", 10, 10, 7, CATEGORY_PIPELINE),
    ("Qualification", 20, 15, 7, CATEGORY_PIPELINE),
    ("Approach/Discovery", 40, 20, 7, CATEGORY_PIPELINE),
    ("Presentation/POC", 60, 15, 7, CATEGORY_BEST_CASE),
    ("Proposal/Negotiation", 80, 20, 7, CATEGORY_COMMIT),
    ("Closed Won", 100, 20, 30, CATEGORY_CLOSED),
    ("Closed Lost", 0, 0, 30, CATEGORY_CLOSED),
]


class StageCatalog:
    """Immutable, validated, ordered collection of stages."""

    def __init__(self, stages: Iterable[Stage]):
        ordered = sorted(stages, key=lambda s: s.position)
        _validate(ordered)
        self._stages: tuple[Stage, ...] = tuple(ordered)
        self._index = {s.key: i for i, s in enumerate(self._stages)}

    def __iter__(self):
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def get(self, key: str) -> Stage:
        """Return the stage for ``key`` or raise ConfigurationError (catalog drift)."""
        try:
            return self._stages[self._index[key]]
        except KeyError:
            raise ConfigurationError(f"Stage '{key}' is not in the stage catalog") from None

    def index_of(self, key: str) -> int:
        self.get(key)
        return self._index[key]

    @property
    def won_stage(self) -> Stage:
        return next(s for s in self._stages if s.is_won)

    @property
    def lost_stage(self) -> Stage:
        return next(s for s in self._stages if s.is_lost)

    @property
    def initial_stage(self) -> Stage:
        """First stage in catalog order; new opportunities start here."""
        return self.open_stages[0]

    @property
    def open_stages(self) -> list[Stage]:
        return [s for s in self._stages if not s.is_terminal]

    def next_stage(self, key: str) -> Stage | None:
        """Next non-terminal stage after ``key``, or None at the last open stage."""
        current = self.index_of(key)
        for stage in self._stages[current + 1:]:
            if not stage.is_terminal:
                return stage
        return None

    def default_category_for(self, key: str) -> str:
        stage = self.get(key)
        if stage.forecast_category:
            return stage.forecast_category
        return CATEGORY_CLOSED if stage.is_terminal else CATEGORY_PIPELINE


def default_catalog() -> StageCatalog:
    """The catalog shipped with the product before any admin edits."""
    return StageCatalog(
        Stage(
            key=key,
            position=pos,
            default_probability=Decimal(prob),
            points=points,
            is_won=key == "Closed Won",
            is_lost=key == "Closed Lost",
            default_due_days=due,
            forecast_category=category,
        )
        for pos, (key, prob, points, due, category) in enumerate(_DEFAULT_STAGES)
    )


def _validate(stages: list[Stage]) -> None:
    if not stages:
        raise ConfigurationError("Stage catalog is empty")

    seen: set[str] = set()
    for s in stages:
        if s.key in seen:
            raise ConfigurationError(f"Duplicate stage key: {s.key}")
        seen.add(s.key)
        if s.is_won and s.is_lost:
            raise ConfigurationError(f"Stage '{s.key}' cannot be both won and lost")
        if not Decimal(0) <= s.default_probability <= Decimal(100):
            raise ConfigurationError(
                f"Stage '{s.key}' probability {s.default_probability} is outside 0-100"
            )
        if s.points < 0:
            raise ConfigurationError(f"Stage '{s.key}' has negative points")
        if s.default_due_days is not None and s.default_due_days < 0:
            raise ConfigurationError(f"Stage '{s.key}' has negative due days")
        if s.forecast_category is not None and s.forecast_category not in FORECAST_CATEGORIES:
            raise ConfigurationError(
                f"Stage '{s.key}' has unknown forecast category '{s.forecast_category}'"
            )

    won = sum(1 for s in stages if s.is_won)
    lost = sum(1 for s in stages if s.is_lost)
    if won != 1 or lost != 1:
        raise ConfigurationError(
            f"Stage catalog needs exactly one won and one lost stage (found {won} won, {lost} lost)"
        )
    if not any(not s.is_terminal for s in stages):
        raise ConfigurationError("Stage catalog has no open stages")
