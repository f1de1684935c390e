from __future__ import annotations
import os
from datetime import timedelta
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

DurationUnit = Literal["hours", "days", "months"]


class Settings(BaseModel):
    model_config = ConfigDict(validate_default=True)

    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "fitbet-api")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/fitbet.db")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = os.getenv("LOG_LEVEL", "INFO").upper()

    # Outbound messaging (Telegram Bot API)
    bot_token: str = os.getenv("BOT_TOKEN", "")
    telegram_api_base: str = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")

    # Challenge timing
    challenge_duration_unit: DurationUnit = os.getenv("CHALLENGE_DURATION_UNIT", "months")  # hours|days|months
    checkin_period_days: int = Field(default=int(os.getenv("CHECKIN_PERIOD_DAYS", "14")), gt=0)
    checkin_period_minutes: int = Field(default=int(os.getenv("CHECKIN_PERIOD_MINUTES", "0")), ge=0)  # overrides days when > 0
    checkin_window_hours: int = Field(default=int(os.getenv("CHECKIN_WINDOW_HOURS", "48")), gt=0)
    reminder_hours_before_close: int = Field(default=int(os.getenv("REMINDER_HOURS_BEFORE_CLOSE", "12")), ge=0)
    onboarding_timeout_hours: int = Field(default=int(os.getenv("ONBOARDING_TIMEOUT_HOURS", "48")), gt=0)
    election_timeout_hours: int = Field(default=int(os.getenv("ELECTION_TIMEOUT_HOURS", "24")), gt=0)

    # Habits
    habits_timezone: str = os.getenv("HABITS_TIMEZONE", "Europe/Moscow")
    habit_reminder_hour: int = Field(default=int(os.getenv("HABIT_REMINDER_HOUR", "21")), ge=0, le=23)  # local hour

    # Scheduler
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "1") == "1"
    tick_interval_seconds: int | None = int(os.environ["TICK_INTERVAL_SECONDS"]) if os.getenv("TICK_INTERVAL_SECONDS") else None

    @property
    def checkin_period(self) -> timedelta:
        if self.checkin_period_minutes > 0:
            return timedelta(minutes=self.checkin_period_minutes)
        return timedelta(days=self.checkin_period_days)

    @property
    def checkin_window(self) -> timedelta:
        return timedelta(hours=self.checkin_window_hours)

    @property
    def reminder_threshold(self) -> timedelta:
        return timedelta(hours=self.reminder_hours_before_close)

    @property
    def onboarding_timeout(self) -> timedelta:
        return timedelta(hours=self.onboarding_timeout_hours)

    @property
    def election_timeout(self) -> timedelta:
        return timedelta(hours=self.election_timeout_hours)

    @property
    def tick_interval(self) -> int:
        if self.tick_interval_seconds:
            return self.tick_interval_seconds
        # minute-scale check-in periods need minute ticks
        if 0 < self.checkin_period_minutes < 60:
            return 60
        return 3600


settings = Settings()
