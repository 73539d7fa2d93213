"""Tests for calendar period helpers."""

from datetime import date

import pytest

from sales_pipeline.domain.periods import month_end, months_inclusive, period_range
from sales_pipeline.errors import InvalidArgument


class TestMonthsInclusive:
    def test_same_day(self):
        assert months_inclusive("2025-02-01", "2025-02-01") == 1

    def test_quarter(self):
        assert months_inclusive(date(2025, 1, 1), date(2025, 3, 31)) == 3

    def test_crosses_year(self):
        assert months_inclusive("2024-11-15", "2025-02-01") == 4

    def test_inverted_floors_to_one(self):
        assert months_inclusive("2025-05-01", "2025-01-01") == 1

    def test_malformed(self):
        with pytest.raises(InvalidArgument):
            months_inclusive("soon", "2025-01-01")


class TestPeriodRange:
    def test_month(self):
        assert period_range("M", date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_quarter(self):
        assert period_range("Q", date(2025, 8, 19)) == (date(2025, 7, 1), date(2025, 9, 30))

    def test_last_quarter(self):
        assert period_range("Q", "2025-12-31") == (date(2025, 10, 1), date(2025, 12, 31))

    def test_year(self):
        assert period_range("Y", date(2025, 6, 1)) == (date(2025, 1, 1), date(2025, 12, 31))

    def test_unknown(self):
        with pytest.raises(InvalidArgument):
            period_range("W", date(2025, 6, 1))

    def test_month_end(self):
        assert month_end(date(2025, 4, 3)) == date(2025, 4, 30)
