from datetime import datetime

import pytest

from utils.date_helpers import (
    add_months,
    add_years,
    advance_by_frequency,
    end_of_day,
    format_datetime,
    parse_datetime,
    start_of_day,
)


class TestFrequencyIncrement:
    """One frequency unit forward from a due date."""

    def test_daily_and_weekly(self):
        d = datetime(2025, 3, 10, 8, 30)
        assert advance_by_frequency(d, "daily") == datetime(2025, 3, 11, 8, 30)
        assert advance_by_frequency(d, "weekly") == datetime(2025, 3, 17, 8, 30)

    def test_monthly_keeps_day_and_time(self):
        assert advance_by_frequency(datetime(2025, 3, 15, 10), "monthly") == datetime(2025, 4, 15, 10)

    def test_monthly_crosses_year(self):
        assert add_months(datetime(2025, 12, 15), 1) == datetime(2026, 1, 15)

    def test_month_end_rolls_over_in_common_year(self):
        """Jan 31 + 1 month is not clamped to Feb 28."""
        assert advance_by_frequency(datetime(2025, 1, 31, 10), "monthly") == datetime(2025, 3, 3, 10)

    def test_month_end_rolls_over_in_leap_year(self):
        assert add_months(datetime(2024, 1, 31, 10), 1) == datetime(2024, 3, 2, 10)

    def test_thirtieth_of_january(self):
        assert add_months(datetime(2025, 1, 30), 1) == datetime(2025, 3, 2)

    def test_yearly(self):
        assert advance_by_frequency(datetime(2025, 6, 1, 9), "yearly") == datetime(2026, 6, 1, 9)

    def test_leap_day_plus_one_year(self):
        assert add_years(datetime(2024, 2, 29, 12), 1) == datetime(2025, 3, 1, 12)

    def test_unknown_frequency_raises(self):
        with pytest.raises(ValueError):
            advance_by_frequency(datetime(2025, 1, 1), "fortnightly")


class TestParsing:

    def test_round_trip_storage_format(self):
        d = datetime(2025, 3, 10, 14, 5, 9)
        assert format_datetime(d) == "2025-03-10 14:05:09"
        assert parse_datetime("2025-03-10 14:05:09") == d

    def test_accepts_iso_and_bare_date(self):
        assert parse_datetime("2025-03-10T14:05:09") == datetime(2025, 3, 10, 14, 5, 9)
        assert parse_datetime("2025-03-10") == datetime(2025, 3, 10)

    def test_bad_values_return_none(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
        assert parse_datetime("next tuesday") is None

    def test_day_bounds(self):
        d = datetime(2025, 3, 10, 14, 5)
        assert start_of_day(d) == datetime(2025, 3, 10, 0, 0, 0)
        assert end_of_day(d) == datetime(2025, 3, 10, 23, 59, 59)
