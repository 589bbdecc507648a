"""Calendar arithmetic for plan durations.

Months and years are calendar increments clamped to the last day of the
target month: 2025-01-31 + 1 month is 2025-02-28 and 2024-02-29 + 1 year is
2025-02-28. Time of day and tzinfo are preserved.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .errors import ValidationError
from .models.subscription import DurationUnit


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _add_years(moment: datetime, years: int) -> datetime:
    return add_months(moment, years * 12)


_ADDERS: Dict[DurationUnit, Callable[[datetime, int], datetime]] = {
    DurationUnit.MINUTES: lambda moment, value: moment + timedelta(minutes=value),
    DurationUnit.HOURS: lambda moment, value: moment + timedelta(hours=value),
    DurationUnit.DAYS: lambda moment, value: moment + timedelta(days=value),
    DurationUnit.WEEKS: lambda moment, value: moment + timedelta(days=7 * value),
    DurationUnit.MONTHS: add_months,
    DurationUnit.YEARS: _add_years,
}


def parse_unit(value: object) -> Optional[DurationUnit]:
    """Return the matching unit, or None when the value is not a recognised unit."""
    if isinstance(value, DurationUnit):
        return value
    if not isinstance(value, str):
        return None
    try:
        return DurationUnit(value.strip().lower())
    except ValueError:
        return None


def add_duration(moment: datetime, value: int, unit: DurationUnit) -> datetime:
    if value < 0:
        raise ValidationError("Duration must not be negative.")
    try:
        return _ADDERS[unit](moment, value)
    except (OverflowError, ValueError) as exc:
        raise ValidationError("Duration is out of range.") from exc
