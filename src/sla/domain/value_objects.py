"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import (
    SLAState, SLA_STATE_SEVERITY, WARNING_RATIO
)
from src.core import EvaluationException

if TYPE_CHECKING:
    from src.sla.domain.entities import SLAPolicy, Thread


_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
END_OF_DAY = "24:00"


def _parse_time(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BusinessHoursWindow(BaseModel):
    """A single working window on one weekday (0 = Sunday ... 6 = Saturday)."""
    model_config = ConfigDict(frozen=True)

    day: int = Field(ge=0, le=6, description="Weekday, 0 = Sunday")
    start_time: str = Field(description="Local start time, HH:MM")
    end_time: str = Field(description="Local end time, HH:MM or 24:00")

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        if not _TIME_PATTERN.match(v):
            raise ValueError("Invalid time format (HH:MM)")
        return v

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v: str) -> str:
        if v != END_OF_DAY and not _TIME_PATTERN.match(v):
            raise ValueError("Invalid time format (HH:MM)")
        return v

    @model_validator(mode="after")
    def validate_order(self) -> "BusinessHoursWindow":
        if self.end_time != END_OF_DAY and self.start_time >= self.end_time:
            raise ValueError("start_time must be earlier than end_time")
        return self

    def bounds_on(self, day: date, zone: ZoneInfo) -> Tuple[datetime, datetime]:
        """UTC start/end instants of this window on a given local date."""
        start = datetime.combine(day, _parse_time(self.start_time), tzinfo=zone)
        if self.end_time == END_OF_DAY:
            end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=zone)
        else:
            end = datetime.combine(day, _parse_time(self.end_time), tzinfo=zone)
        # same-zone arithmetic ignores DST shifts; compare in UTC
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class BusinessHours(BaseModel):
    """
    Working calendar for an SLA policy.

    Only time inside a window counts toward the first-response deadline.
    Windows are interpreted in the calendar's timezone, so DST shifts are
    honoured; holidays (local dates) are skipped entirely.
    """
    model_config = ConfigDict(frozen=True)

    timezone: str = Field(default="UTC", description="IANA timezone name")
    windows: List[BusinessHoursWindow] = Field(..., min_length=1)
    holidays: List[date] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @model_validator(mode="after")
    def validate_no_overlap(self) -> "BusinessHours":
        by_day: Dict[int, List[BusinessHoursWindow]] = {}
        for window in self.windows:
            by_day.setdefault(window.day, []).append(window)

        for day, windows in by_day.items():
            ordered = sorted(windows, key=lambda w: w.start_time)
            for previous, current in zip(ordered, ordered[1:]):
                if current.start_time < previous.end_time:
                    raise ValueError(f"Overlapping business hours windows on day {day}")
        return self

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def business_seconds_between(self, start: datetime, end: datetime) -> float:
        """Seconds of [start, end) that fall inside working windows."""
        start, end = as_utc(start), as_utc(end)
        if end <= start:
            return 0.0

        zone = self.zone
        holidays = set(self.holidays)
        day = start.astimezone(zone).date()
        last_day = end.astimezone(zone).date()
        total = 0.0

        while day <= last_day:
            if day not in holidays:
                weekday = day.isoweekday() % 7
                for window in self.windows:
                    if window.day != weekday:
                        continue
                    window_start, window_end = window.bounds_on(day, zone)
                    lo = max(start, window_start)
                    hi = min(end, window_end)
                    if hi > lo:
                        total += (hi - lo).total_seconds()
            day += timedelta(days=1)

        return total


@dataclass(frozen=True)
class SLAStatus:
    """
    Derived first-response SLA status of a thread at one instant.

    minutes_remaining is signed: negative means overdue.
    """
    state: SLAState
    minutes_elapsed: int
    minutes_remaining: int
    responded: bool = False

    @property
    def is_escalatable(self) -> bool:
        return self.state in (SLAState.WARNING, SLAState.BREACHED)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless: every input, including the policy and the evaluation
    instant, is passed in explicitly.
    """

    @staticmethod
    def minutes_between(
        start: datetime,
        end: datetime,
        business_hours: Optional[BusinessHours] = None
    ) -> int:
        """Whole minutes from start to end, counting only business time if a calendar is given."""
        if business_hours is not None:
            seconds = business_hours.business_seconds_between(start, end)
        else:
            seconds = (as_utc(end) - as_utc(start)).total_seconds()
        return int(max(0.0, seconds) // 60)

    @staticmethod
    def classify(
        minutes_remaining: int,
        first_response_minutes: int,
        warning_ratio: float = WARNING_RATIO
    ) -> SLAState:
        """Map remaining minutes of an unanswered thread to a state."""
        if minutes_remaining < 0:
            return SLAState.BREACHED
        if minutes_remaining < first_response_minutes * warning_ratio:
            return SLAState.WARNING
        return SLAState.OK

    @staticmethod
    def evaluate(
        thread: "Thread",
        policy: "SLAPolicy",
        now: datetime,
        warning_ratio: float = WARNING_RATIO
    ) -> SLAStatus:
        """
        Compute the first-response SLA status of a thread.

        Once any outbound message exists the thread is permanently ok:
        only the first response is measured. Elapsed and remaining minutes
        are still reported for display.

        Raises:
            EvaluationException: thread data is inconsistent with `now`
        """
        created_at = as_utc(thread.created_at)
        now = as_utc(now)
        if created_at > now:
            raise EvaluationException(thread.id, "thread created after evaluation time")

        deadline = policy.first_response_minutes
        first_response = thread.first_response

        if first_response is not None:
            responded_at = as_utc(first_response.sent_at)
            if responded_at < created_at:
                raise EvaluationException(thread.id, "first response precedes thread creation")
            elapsed = SLACalculator.minutes_between(created_at, responded_at, policy.business_hours)
            return SLAStatus(
                state=SLAState.OK,
                minutes_elapsed=elapsed,
                minutes_remaining=deadline - elapsed,
                responded=True
            )

        elapsed = SLACalculator.minutes_between(created_at, now, policy.business_hours)
        remaining = deadline - elapsed
        return SLAStatus(
            state=SLACalculator.classify(remaining, deadline, warning_ratio),
            minutes_elapsed=elapsed,
            minutes_remaining=remaining,
            responded=False
        )

    @staticmethod
    def should_escalate(
        current_state: SLAState,
        previous_state: Optional[SLAState] = None
    ) -> bool:
        """
        Escalate only on a move into a more severe state.

        A thread never seen before ranks as ok.
        """
        previous = previous_state or SLAState.OK
        return SLA_STATE_SEVERITY[current_state] > SLA_STATE_SEVERITY[previous]


def format_sla_time(minutes: int) -> str:
    """Human readable remaining/overdue time, e.g. '1h 5m overdue'."""
    suffix = "overdue" if minutes < 0 else "remaining"
    minutes = abs(minutes)
    if minutes < 60:
        return f"{minutes}m {suffix}"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m {suffix}"


class SLAMonitorConfig(BaseModel):
    """
    SLA monitor tuning loaded from YAML.

    Policies themselves live in the database; this only holds knobs of
    the monitoring loop and escalation routing.
    """
    warning_ratio: float = Field(
        default=WARNING_RATIO,
        gt=0,
        lt=1,
        description="Fraction of the deadline below which an unanswered thread is 'warning'"
    )
    thread_timeout_seconds: float = Field(default=10.0, gt=0)
    sink_timeout_seconds: float = Field(default=15.0, gt=0)
    tenant_load_timeout_seconds: float = Field(default=30.0, gt=0)
    max_concurrent_tenants: int = Field(default=5, ge=1)
    escalation_channels: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            SLAState.WARNING: ["#support-alerts"],
            SLAState.BREACHED: ["#support-escalations"],
        },
        description="Slack channels to notify per escalated state"
    )

    def get_channels_for_state(self, state: str) -> List[str]:
        """Get Slack channels to notify for an escalated state."""
        return self.escalation_channels.get(state, [])
