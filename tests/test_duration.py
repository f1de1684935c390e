from __future__ import annotations
from datetime import datetime, timedelta, timezone
import pydantic
import pytest
from fitbet.config import Settings
from fitbet.services.duration import add_duration, format_duration, format_window_duration

START = datetime(2024, 1, 31, 8, 0, tzinfo=timezone.utc)


def test_add_duration_fixed_units():
    assert add_duration(START, 36, "hours") == START + timedelta(hours=36)
    assert add_duration(START, 10, "days") == datetime(2024, 2, 10, 8, 0, tzinfo=timezone.utc)


def test_add_duration_calendar_months_clamp_to_month_end():
    # leap year
    assert add_duration(START, 1, "months") == datetime(2024, 2, 29, 8, 0, tzinfo=timezone.utc)
    assert add_duration(START, 12, "months") == datetime(2025, 1, 31, 8, 0, tzinfo=timezone.utc)


def test_add_duration_unknown_unit():
    with pytest.raises(ValueError):
        add_duration(START, 1, "weeks")


def test_duration_labels():
    assert format_duration(1, "months") == "1 month"
    assert format_duration(3, "days") == "3 days"
    assert format_window_duration(timedelta(minutes=30)) == "30 min"
    assert format_window_duration(timedelta(hours=48)) == "48 h"
    assert format_window_duration(timedelta(days=3)) == "3 d"


def test_checkin_period_minutes_override_days():
    assert Settings(checkin_period_days=14, checkin_period_minutes=0).checkin_period == timedelta(days=14)
    assert Settings(checkin_period_days=14, checkin_period_minutes=10).checkin_period == timedelta(minutes=10)


def test_invalid_settings_fail_fast():
    with pytest.raises(pydantic.ValidationError):
        Settings(challenge_duration_unit="weeks")
    with pytest.raises(pydantic.ValidationError):
        Settings(checkin_window_hours=-1)
