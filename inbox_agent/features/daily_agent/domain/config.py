"""
Per-account agent configuration.

Stored as a JSON document alongside the account and validated here before a
run starts. Defaults come from the global settings.
"""

import re
from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inbox_agent.config import settings

_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" string into a time."""
    match = _CLOCK_PATTERN.match(value)
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"

    @field_validator("start", "end")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        parse_clock(value)
        return value

    def contains(self, moment: datetime) -> bool:
        """True if the local wall-clock time of moment falls inside the window."""
        if not self.enabled:
            return False

        current = moment.hour * 60 + moment.minute
        start = parse_clock(self.start)
        end = parse_clock(self.end)
        start_minutes = start.hour * 60 + start.minute
        end_minutes = end.hour * 60 + end.minute

        # Overnight window, e.g. 22:00-08:00
        if start_minutes > end_minutes:
            return current >= start_minutes or current < end_minutes
        return start_minutes <= current < end_minutes


class AgentConfig(BaseModel):
    """Feature flags, thresholds and capacity settings for one account."""

    model_config = ConfigDict(extra="ignore")

    # Feature flags
    daily_workflow_enabled: bool = False
    categorization_enabled: bool = True
    faq_detection_enabled: bool = True
    voice_matching_enabled: bool = True
    sentiment_analysis_enabled: bool = True
    auto_archive_enabled: bool = False
    notifications_enabled: bool = True

    # Thresholds
    escalation_threshold: float = Field(default=settings.WORKFLOW_ESCALATION_THRESHOLD, ge=0, le=1)
    max_auto_responses: int = Field(default=settings.WORKFLOW_MAX_AUTO_RESPONSES, ge=0)
    require_approval: bool = True
    active_threshold_minutes: int = Field(
        default=settings.WORKFLOW_ACTIVE_THRESHOLD_MINUTES, ge=0
    )
    daily_capacity: int = Field(default=settings.WORKFLOW_DAILY_CAPACITY, ge=0, le=100)

    # Scheduling
    timezone: str = settings.SCHEDULER_DEFAULT_TIMEZONE
    run_time: str = settings.SCHEDULER_DEFAULT_RUN_TIME
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    # Boundary reply
    boundary_message_template: str | None = None
    creator_name: str | None = None
    faq_url: str | None = None
    community_url: str | None = None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown IANA timezone {value!r}") from e
        return value

    @field_validator("run_time")
    @classmethod
    def _validate_run_time(cls, value: str) -> str:
        parse_clock(value)
        return value

    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_now(self, now: datetime) -> datetime:
        return now.astimezone(self.zone())
