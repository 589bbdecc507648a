from datetime import datetime, timezone

import pytest

from app.domain.durations import add_duration, parse_unit
from app.domain.errors import ValidationError
from app.domain.models import DurationUnit


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestAddDuration:
    def test_months_keep_day_of_month(self):
        assert add_duration(utc(2025, 1, 15), 2, DurationUnit.MONTHS) == utc(2025, 3, 15)

    def test_month_end_clamps_to_last_day(self):
        assert add_duration(utc(2025, 1, 31), 1, DurationUnit.MONTHS) == utc(2025, 2, 28)
        assert add_duration(utc(2024, 1, 31), 1, DurationUnit.MONTHS) == utc(2024, 2, 29)

    def test_months_roll_over_the_year(self):
        assert add_duration(utc(2025, 11, 30, 8, 15), 3, DurationUnit.MONTHS) == utc(2026, 2, 28, 8, 15)

    def test_leap_day_plus_one_year(self):
        assert add_duration(utc(2024, 2, 29), 1, DurationUnit.YEARS) == utc(2025, 2, 28)

    @pytest.mark.parametrize(
        "unit, expected",
        [
            (DurationUnit.MINUTES, utc(2025, 1, 1, 0, 45)),
            (DurationUnit.HOURS, utc(2025, 1, 2, 21)),
            (DurationUnit.DAYS, utc(2025, 2, 15)),
            (DurationUnit.WEEKS, utc(2025, 11, 12)),
        ],
    )
    def test_fixed_length_units(self, unit, expected):
        assert add_duration(utc(2025, 1, 1), 45, unit) == expected

    def test_zero_is_identity(self):
        assert add_duration(utc(2025, 1, 1), 0, DurationUnit.YEARS) == utc(2025, 1, 1)

    def test_negative_value_is_rejected(self):
        with pytest.raises(ValidationError):
            add_duration(utc(2025, 1, 1), -1, DurationUnit.DAYS)

    @pytest.mark.parametrize(
        "unit, value",
        [
            (DurationUnit.MINUTES, 10**15),
            (DurationUnit.HOURS, 10**13),
            (DurationUnit.DAYS, 10**9),
            (DurationUnit.WEEKS, 10**8),
            (DurationUnit.DAYS, 3_000_000),
            (DurationUnit.MONTHS, 120_000),
            (DurationUnit.YEARS, 8_000),
        ],
    )
    def test_out_of_range_values_are_rejected(self, unit, value):
        with pytest.raises(ValidationError, match="out of range"):
            add_duration(utc(2025, 1, 1), value, unit)


class TestParseUnit:
    def test_normalises_case_and_whitespace(self):
        assert parse_unit(" Months ") == DurationUnit.MONTHS

    @pytest.mark.parametrize("value", ["fortnights", "", None, 3])
    def test_unknown_values_return_none(self, value):
        assert parse_unit(value) is None
