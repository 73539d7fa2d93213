"""Tests for opportunity store: scoped reads and optimistic-concurrency transitions."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sales_pipeline.db.models import OpportunityRow, StageHistoryRow
from sales_pipeline.domain.records import OrgScope, opportunity_from_row
from sales_pipeline.domain.stage_catalog import default_catalog
from sales_pipeline.errors import ConflictError, InvalidArgument, NotFound
from sales_pipeline.store.opportunity_store import (
    count_without_close_date,
    create,
    fetch_history,
    fetch_scoped,
    get,
    transition,
)

NOW = datetime(2025, 4, 7, 9, 0, tzinfo=timezone.utc)


def _make_row(**overrides) -> OpportunityRow:
    fields = dict(
        id="o1",
        name="ERP rollout",
        owner_id="u1",
        stage="Qualification",
        stage_entered_at=datetime(2025, 4, 1, tzinfo=timezone.utc),
        amount=Decimal("1000.00"),
        currency="IDR",
        probability=Decimal("20.00"),
        forecast_category="Pipeline",
        status="open",
        expected_close_date=date(2025, 5, 30),
        version=3,
        is_deleted=False,
    )
    fields.update(overrides)
    return OpportunityRow(**fields)


def _session_returning_rows(rows) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session.execute = AsyncMock(return_value=result)
    return session


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestFetchScoped:
    @pytest.mark.asyncio
    async def test_parses_rows(self):
        session = _session_returning_rows([_make_row()])
        scope = OrgScope(owner_ids=frozenset({"u1"}), profile_ids=frozenset({"p1"}))

        opps = await fetch_scoped(session, scope)
        assert len(opps) == 1
        assert opps[0].amount == Decimal("1000.00")
        assert opps[0].version == 3

    @pytest.mark.asyncio
    async def test_empty_scope_skips_query(self):
        session = AsyncMock()
        opps = await fetch_scoped(session, OrgScope())
        assert opps == []
        session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrestricted_scope_queries(self):
        session = _session_returning_rows([])
        opps = await fetch_scoped(session, OrgScope(unrestricted=True))
        assert opps == []
        session.execute.assert_called_once()

    @pytest.mark.asyncio
    async def test_error_rolls_back(self):
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=RuntimeError("connection reset"))
        scope = OrgScope(owner_ids=frozenset({"u1"}))

        with pytest.raises(RuntimeError):
            await fetch_scoped(session, scope)
        session.rollback.assert_called_once()


class TestCountWithoutCloseDate:
    @pytest.mark.asyncio
    async def test_returns_count(self):
        session = AsyncMock()
        result = MagicMock()
        result.scalar_one.return_value = 4
        session.execute = AsyncMock(return_value=result)
        scope = OrgScope(owner_ids=frozenset({"u1", "u2"}))

        assert await count_without_close_date(session, scope, "Commit") == 4
        sql = str(session.execute.call_args[0][0])
        assert "expected_close_date IS NULL" in sql
        assert "forecast_category" in sql

    @pytest.mark.asyncio
    async def test_empty_scope_skips_query(self):
        session = AsyncMock()
        assert await count_without_close_date(session, OrgScope()) == 0
        session.execute.assert_not_called()


class TestGet:
    @pytest.mark.asyncio
    async def test_found(self):
        session = AsyncMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = _make_row()
        session.execute = AsyncMock(return_value=result)

        opp = await get(session, "o1")
        assert opp.stage == "Qualification"

    @pytest.mark.asyncio
    async def test_missing(self):
        session = AsyncMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute = AsyncMock(return_value=result)

        with pytest.raises(NotFound):
            await get(session, "nope")


class TestFetchHistory:
    @pytest.mark.asyncio
    async def test_groups_by_opportunity(self):
        rows = [
            StageHistoryRow(opportunity_id="o1", from_stage=None, to_stage="Prospecting",
                            changed_at=datetime(2025, 3, 1, tzinfo=timezone.utc)),
            StageHistoryRow(opportunity_id="o2", from_stage=None, to_stage="Prospecting",
                            changed_at=datetime(2025, 3, 2, tzinfo=timezone.utc)),
            StageHistoryRow(opportunity_id="o1", from_stage="Prospecting", to_stage="Qualification",
                            changed_at=datetime(2025, 3, 5, tzinfo=timezone.utc)),
        ]
        session = _session_returning_rows(rows)

        history = await fetch_history(session, ["o1", "o2"])
        assert [h.to_stage for h in history["o1"]] == ["Prospecting", "Qualification"]
        assert len(history["o2"]) == 1

    @pytest.mark.asyncio
    async def test_no_ids(self):
        session = AsyncMock()
        assert await fetch_history(session, []) == {}
        session.execute.assert_not_called()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_starts_at_first_stage_with_history(self):
        session = AsyncMock()
        session.add = MagicMock()

        opp = await create(session, default_catalog(), "u1", "New deal", Decimal(500), "IDR", now=NOW)
        assert opp.stage == "Prospecting"
        assert opp.probability == Decimal(10)
        assert opp.status == "open"
        assert opp.stage_entered_at == NOW

        added = [c.args[0] for c in session.add.call_args_list]
        assert isinstance(added[0], OpportunityRow)
        assert isinstance(added[1], StageHistoryRow)
        assert added[1].opportunity_id == added[0].id
        assert added[1].from_stage is None
        session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_negative_amount(self):
        session = AsyncMock()
        with pytest.raises(InvalidArgument):
            await create(session, default_catalog(), "u1", "Bad", Decimal(-1), "IDR")
        session.commit.assert_not_called()


class TestTransition:
    @pytest.mark.asyncio
    @patch("sales_pipeline.store.opportunity_store.get")
    async def test_advance_writes_update_and_history(self, mock_get):
        mock_get.return_value = opportunity_from_row(_make_row())
        session = AsyncMock()
        session.add = MagicMock()
        session.execute = AsyncMock(return_value=MagicMock(rowcount=1))

        opp = await transition(session, default_catalog(), "o1", "advance", "u1", now=NOW)
        assert opp.stage == "Approach/Discovery"
        assert opp.version == 4

        history = session.add.call_args[0][0]
        assert isinstance(history, StageHistoryRow)
        assert (history.from_stage, history.to_stage) == ("Qualification", "Approach/Discovery")
        session.commit.assert_called_once()

    @pytest.mark.asyncio
    @patch("sales_pipeline.store.opportunity_store.get")
    async def test_stale_version_is_conflict(self, mock_get):
        mock_get.return_value = opportunity_from_row(_make_row())
        session = AsyncMock()
        session.add = MagicMock()
        session.execute = AsyncMock(return_value=MagicMock(rowcount=0))

        with pytest.raises(ConflictError):
            await transition(session, default_catalog(), "o1", "mark_won", "u2", now=NOW)
        session.add.assert_not_called()
        session.commit.assert_not_called()
        session.rollback.assert_called_once()

    @pytest.mark.asyncio
    @patch("sales_pipeline.store.opportunity_store.get")
    async def test_precondition_failure_writes_nothing(self, mock_get):
        mock_get.return_value = opportunity_from_row(
            _make_row(stage="Closed Won", status="won", probability=Decimal(100))
        )
        session = AsyncMock()

        with pytest.raises(ConflictError):
            await transition(session, default_catalog(), "o1", "mark_lost", "u2", loss_reason="Late")
        session.execute.assert_not_called()

    @pytest.mark.asyncio
    @patch("sales_pipeline.store.opportunity_store.get")
    async def test_inconsistent_row_is_rejected(self, mock_get):
        mock_get.return_value = opportunity_from_row(
            _make_row(stage="Closed Won", status="open", probability=Decimal(100))
        )
        session = AsyncMock()

        with pytest.raises(InvalidArgument):
            await transition(session, default_catalog(), "o1", "mark_lost", "u2", loss_reason="Late")
        session.execute.assert_not_called()
        session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        session = AsyncMock()
        with pytest.raises(InvalidArgument):
            await transition(session, default_catalog(), "o1", "teleport", "u1")
