"""Tests for record parsing at the storage boundary."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from sales_pipeline.domain.records import (
    opportunity_from_row,
    profile_from_row,
    stage_from_row,
    target_from_row,
    to_datetime,
    to_decimal,
)
from sales_pipeline.errors import InvalidArgument


class TestToDecimal:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_rejected(self):
        with pytest.raises(InvalidArgument):
            to_decimal(None, "amount")

    def test_bool_rejected(self):
        with pytest.raises(InvalidArgument):
            to_decimal(True)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidArgument, match="amount"):
            to_decimal("lots", "amount")


class TestToDatetime:
    def test_z_suffix(self):
        assert to_datetime("2025-01-02T03:04:05Z") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert to_datetime(datetime(2025, 1, 2)).tzinfo == timezone.utc


class TestOpportunityFromRow:
    def test_full_row(self):
        opp = opportunity_from_row({
            "id": "o1",
            "owner_id": "u1",
            "stage": "Qualification",
            "amount": "1250000.50",
            "probability": 20,
            "forecast_category": "Pipeline",
            "expected_close_date": "2025-03-31",
            "stage_entered_at": "2025-03-01T08:00:00Z",
            "version": 4,
        })
        assert opp.amount == Decimal("1250000.50")
        assert opp.expected_close_date == date(2025, 3, 31)
        assert opp.stage_entered_at.tzinfo is not None
        assert opp.version == 4

    def test_null_amount_and_probability_default_to_zero(self):
        opp = opportunity_from_row({"id": "o1", "owner_id": "u1", "stage": "Prospecting", "amount": None})
        assert opp.amount == Decimal(0)
        assert opp.probability == Decimal(0)
        assert opp.status == "open"
        assert opp.currency == "IDR"

    def test_missing_stage(self):
        with pytest.raises(InvalidArgument):
            opportunity_from_row({"id": "o1", "owner_id": "u1"})

    def test_unknown_status(self):
        with pytest.raises(InvalidArgument):
            opportunity_from_row({"id": "o1", "owner_id": "u1", "stage": "Prospecting", "status": "maybe"})

    def test_malformed_date(self):
        with pytest.raises(InvalidArgument):
            opportunity_from_row({
                "id": "o1", "owner_id": "u1", "stage": "Prospecting",
                "expected_close_date": "end of Q1",
            })


class TestOtherRows:
    def test_stage_row(self):
        stage = stage_from_row({"key": "Closed Won", "position": 5, "default_probability": 100,
                                "points": 20, "is_won": True, "default_due_days": 30})
        assert stage.is_terminal
        assert stage.default_due_days == 30

    def test_target_row(self):
        target = target_from_row({"id": 7, "assigned_to": "p1", "amount": "300",
                                  "period_start": "2025-01-01", "period_end": "2025-03-31"})
        assert target.id == "7"
        assert target.measure == "revenue"
        assert target.amount == Decimal(300)

    def test_target_row_unknown_measure(self):
        with pytest.raises(InvalidArgument):
            target_from_row({"assigned_to": "p1", "amount": 1, "measure": "units",
                             "period_start": "2025-01-01", "period_end": "2025-01-31"})

    def test_profile_row_unknown_role(self):
        with pytest.raises(InvalidArgument):
            profile_from_row({"id": "p1", "user_id": "u1", "role": "intern"})
