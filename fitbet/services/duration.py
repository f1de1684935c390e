from __future__ import annotations
from datetime import datetime, timedelta
from dateutil.relativedelta import relativedelta
from fitbet.config import DurationUnit


def add_duration(start: datetime, value: int, unit: DurationUnit) -> datetime:
    """
    Challenge end for a duration in the configured unit.
    Months are calendar months (Jan 31 + 1 month = Feb 28/29), hours and days are fixed spans.

    Examples:
        >>> from datetime import timezone
        >>> add_duration(datetime(2025, 1, 31, tzinfo=timezone.utc), 1, "months").date().isoformat()
        '2025-02-28'
    """
    if unit == "hours":
        return start + timedelta(hours=value)
    if unit == "days":
        return start + timedelta(days=value)
    if unit == "months":
        return start + relativedelta(months=value)
    raise ValueError(f"unknown duration unit: {unit}")


def format_duration(value: int, unit: DurationUnit) -> str:
    singular = {"hours": "hour", "days": "day", "months": "month"}[unit]
    return f"{value} {singular if value == 1 else unit}"


def format_window_duration(span: timedelta) -> str:
    total_minutes = max(1, round(span.total_seconds() / 60))
    if total_minutes < 60:
        return f"{total_minutes} min"
    total_hours = round(total_minutes / 60)
    if total_hours <= 48:
        return f"{total_hours} h"
    return f"{round(total_hours / 24)} d"
