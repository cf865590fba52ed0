"""All settings, loaded from the environment and the .env file.

Business Rules:
- Every timing constant (send rate limit, staleness bound, reply delay,
  tick intervals) is configurable without code changes
- Business hours are HH:MM strings in default_timezone; start < end
- working_days uses Python weekday numbers (Mon=0 .. Sun=6)

Called by: everything
Depends on: pydantic-settings
"""

from datetime import time, timedelta
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_hhmm(value: str) -> time:
    """Parse "09:30" into a time. Raises ValueError on junk."""
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    app_url: str = "http://localhost:8000"
    dashboard_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///./replydesk.db"
    admin_api_key: str = ""
    log_level: str = "INFO"

    # Collaborators
    anthropic_api_key: str = ""
    slack_notification_url: str = ""
    http_timeout_seconds: int = 30

    # Periodic jobs
    scheduler_enabled: bool = True
    ingest_interval_min: int = 5
    send_tick_seconds: int = 60
    max_emails_per_check: int = 20
    ingest_lookback_hours: int = 24

    # Response lifecycle
    send_rate_limit_ms: int = 600_000
    response_staleness_hours: float = 6
    response_delay_minutes: int = 60
    demo_confidence_threshold: float = 0.7

    # Slot proposal
    business_hours_start: str = "09:00"
    business_hours_end: str = "17:00"
    working_days: list[int] = [0, 1, 2, 3, 4]
    meeting_duration_min: int = 30
    max_proposed_slots: int = 3
    min_lead_minutes: int = 150
    slot_search_days: int = 7
    default_timezone: str = "America/Los_Angeles"

    # Retention
    email_retention_days: int = 90
    event_retention_days: int = 365

    @field_validator("working_days")
    @classmethod
    def _check_working_days(cls, v: list[int]) -> list[int]:
        if not v or any(d < 0 or d > 6 for d in v):
            raise ValueError("working_days must be weekday numbers 0-6")
        return sorted(set(v))

    @field_validator(
        "ingest_interval_min",
        "send_tick_seconds",
        "send_rate_limit_ms",
        "meeting_duration_min",
        "max_proposed_slots",
        "slot_search_days",
    )
    @classmethod
    def _check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def _check_business_hours(self) -> "Settings":
        start = parse_hhmm(self.business_hours_start)
        end = parse_hhmm(self.business_hours_end)
        if start >= end:
            raise ValueError("business_hours_start must be before business_hours_end")
        return self

    @property
    def send_rate_limit(self) -> timedelta:
        return timedelta(milliseconds=self.send_rate_limit_ms)

    @property
    def response_staleness(self) -> timedelta:
        return timedelta(hours=self.response_staleness_hours)

    @property
    def response_delay(self) -> timedelta:
        return timedelta(minutes=self.response_delay_minutes)

    @property
    def min_lead(self) -> timedelta:
        return timedelta(minutes=self.min_lead_minutes)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
