"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from config import SLAType, SLAState, DEFAULT_PRIORITY_MULTIPLIERS
from core import ConfigurationException
from sla.domain.entities import SLAProfile, Ticket

# Upper bound on how far ahead a business window is searched for
_MAX_SEARCH_DAYS = 400


class BusinessCalendar(BaseModel):
    """
    Weekly business-hours template plus holidays.

    Windows are half-open: [start_hour, end_hour) in local time of
    ``timezone``. Weekdays follow datetime.weekday() (Monday == 0).
    """

    model_config = {"frozen": True}

    timezone: str = Field(default="UTC", description="IANA timezone of the template")
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=17, ge=1, le=24)
    workdays: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    holidays: List[date] = Field(default_factory=list)

    @field_validator("workdays")
    @classmethod
    def validate_workdays(cls, v: List[int]) -> List[int]:
        """Weekdays must be 0..6; duplicates are dropped."""
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"workday {day} out of range 0..6")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {v!r}") from e
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessCalendar":
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_business_day(self, day: date) -> bool:
        return day.weekday() in self.workdays and day not in self.holidays

    def window_for(self, day: date) -> Tuple[datetime, datetime]:
        """UTC bounds of the business window on a local date."""
        start = datetime.combine(day, time(self.start_hour), tzinfo=self.tz)
        if self.end_hour == 24:
            end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=self.tz)
        else:
            end = datetime.combine(day, time(self.end_hour), tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def is_business_moment(self, instant: datetime) -> bool:
        """Whether an instant falls inside a business window."""
        instant = _require_aware(instant).astimezone(timezone.utc)
        local_day = instant.astimezone(self.tz).date()
        if not self.is_business_day(local_day):
            return False
        start, end = self.window_for(local_day)
        return start <= instant < end

    def _current_or_next_window(self, instant: datetime) -> Tuple[datetime, datetime]:
        """Window containing instant, or the next one after it (UTC)."""
        local_day = instant.astimezone(self.tz).date()
        for offset in range(_MAX_SEARCH_DAYS):
            day = local_day + timedelta(days=offset)
            if not self.is_business_day(day):
                continue
            start, end = self.window_for(day)
            if instant < end:
                return max(start, instant), end
        raise ConfigurationException(
            "Business calendar has no business window",
            {"searched_days": _MAX_SEARCH_DAYS, "from": instant.isoformat()}
        )

    def next_business_start(self, instant: datetime) -> datetime:
        """instant itself when inside business hours, else the next window start."""
        instant = _require_aware(instant)
        start, _ = self._current_or_next_window(instant.astimezone(timezone.utc))
        return start.astimezone(instant.tzinfo)

    def add_business_minutes(self, start: datetime, minutes: float) -> datetime:
        """
        Advance start by business minutes only.

        Minutes are consumed inside business windows; at a window boundary
        the remainder carries to the next window start. A start outside
        business hours first moves to the next window start. The result is
        never inside a non-business interval: a remainder that would end
        exactly on a window's closing boundary rolls to the next window.
        """
        start = _require_aware(start)
        remaining = timedelta(minutes=max(0.0, float(minutes)))
        current, window_end = self._current_or_next_window(start.astimezone(timezone.utc))

        while remaining >= window_end - current:
            remaining -= window_end - current
            current, window_end = self._current_or_next_window(window_end)

        return (current + remaining).astimezone(start.tzinfo)

    def business_minutes_between(self, start: datetime, end: datetime) -> float:
        """Business minutes elapsed from start to end (0 when end <= start)."""
        start = _require_aware(start).astimezone(timezone.utc)
        end = _require_aware(end).astimezone(timezone.utc)
        if end <= start:
            return 0.0

        total = timedelta()
        day = start.astimezone(self.tz).date()
        last_day = end.astimezone(self.tz).date()
        while day <= last_day:
            if self.is_business_day(day):
                window_start, window_end = self.window_for(day)
                overlap = min(end, window_end) - max(start, window_start)
                if overlap > timedelta():
                    total += overlap
            day += timedelta(days=1)
        return total.total_seconds() / 60


def _require_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError("SLA arithmetic requires timezone-aware datetimes")
    return instant


class SLAProfileConfig(BaseModel):
    """Profile definition seeded into storage at startup when missing."""

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    response_time_minutes: int = Field(default=240, gt=0)
    resolution_time_minutes: int = Field(default=1440, gt=0)
    business_hours_only: bool = True
    priority_multipliers: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MULTIPLIERS)
    )
    is_default: bool = False

    def to_entity(self, profile_id: str) -> SLAProfile:
        return SLAProfile(id=profile_id, **self.model_dump())


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    Holds the business calendar used for business-hours profiles, the
    at-risk threshold used when reporting remaining SLA time and the
    profiles seeded on first start.
    """

    business_hours: BusinessCalendar = Field(default_factory=BusinessCalendar)
    at_risk_threshold_percent: int = Field(
        default=15, ge=0, le=100,
        description="Remaining-time percentage at which a clock is at risk"
    )
    profiles: List[SLAProfileConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_single_default(self) -> "SLAConfig":
        if sum(1 for p in self.profiles if p.is_default) > 1:
            raise ValueError("at most one profile may be marked is_default")
        return self


@dataclass(frozen=True)
class SLADeadlines:
    """Response and resolution due instants for one ticket."""

    response_due: datetime
    resolution_due: datetime


@dataclass(frozen=True)
class SLAClockStatus:
    """Read-side view of one SLA clock."""

    sla_type: str
    deadline: Optional[datetime]
    remaining_seconds: float
    percentage_remaining: float
    state: str
    met: Optional[bool]
    met_at: Optional[datetime]


class SLACalculator:
    """
    Deadline and compliance calculations.

    Stateless apart from the business calendar; every method takes the
    instant it evaluates at, so results are deterministic.
    """

    def __init__(self, calendar: BusinessCalendar, at_risk_threshold_percent: int = 15):
        self._calendar = calendar
        self._at_risk_threshold = at_risk_threshold_percent

    @classmethod
    def from_config(cls, config: SLAConfig) -> "SLACalculator":
        return cls(config.business_hours, config.at_risk_threshold_percent)

    @property
    def calendar(self) -> BusinessCalendar:
        return self._calendar

    @staticmethod
    def effective_minutes(profile: SLAProfile, priority: str, sla_type: str) -> float:
        """
        Base target scaled by the priority multiplier.

        Example:
            response_time_minutes = 240, multiplier high = 0.5
            effective response = 240 x 0.5 = 120 minutes
        """
        base = (
            profile.response_time_minutes
            if sla_type == SLAType.RESPONSE
            else profile.resolution_time_minutes
        )
        return base * profile.multiplier_for(priority)

    def _deadline(self, created_at: datetime, minutes: float, business_hours_only: bool) -> datetime:
        if business_hours_only:
            return self._calendar.add_business_minutes(created_at, minutes)
        return created_at + timedelta(minutes=minutes)

    def compute_deadlines(self, ticket: Ticket, profile: SLAProfile) -> SLADeadlines:
        """
        Response and resolution due instants.

        Both clocks run independently from ticket creation.
        """
        response_minutes = self.effective_minutes(profile, ticket.priority, SLAType.RESPONSE)
        resolution_minutes = self.effective_minutes(profile, ticket.priority, SLAType.RESOLUTION)
        return SLADeadlines(
            response_due=self._deadline(
                ticket.created_at, response_minutes, profile.business_hours_only
            ),
            resolution_due=self._deadline(
                ticket.created_at, resolution_minutes, profile.business_hours_only
            ),
        )

    def apply_deadlines(self, ticket: Ticket, profile: SLAProfile) -> SLADeadlines:
        """
        Recompute deadlines from scratch and reset both met flags.

        Used at creation and on explicit profile reassignment; the caller
        re-runs evaluate_compliance afterwards.
        """
        deadlines = self.compute_deadlines(ticket, profile)
        ticket.sla_profile_id = profile.id
        ticket.sla_response_due = deadlines.response_due
        ticket.sla_resolution_due = deadlines.resolution_due
        ticket.sla_response_met = None
        ticket.sla_resolution_met = None
        return deadlines

    @staticmethod
    def _judge(due: Optional[datetime], milestone: Optional[datetime],
               current: Optional[bool], now: datetime) -> Optional[bool]:
        if due is None or current is not None:
            return current
        if milestone is not None:
            return milestone <= due
        if now > due:
            return False
        return None

    def evaluate_compliance(self, ticket: Ticket, now: datetime) -> List[str]:
        """
        Set met flags that can be decided at ``now``.

        A flag that is already True or False is left untouched. Returns the
        SLA types whose flag was newly set to False (breaches).
        """
        breached = []

        response = self._judge(
            ticket.sla_response_due, ticket.first_response_at,
            ticket.sla_response_met, now
        )
        if response is not ticket.sla_response_met:
            ticket.sla_response_met = response
            if response is False:
                breached.append(SLAType.RESPONSE)

        resolution = self._judge(
            ticket.sla_resolution_due, ticket.resolved_at,
            ticket.sla_resolution_met, now
        )
        if resolution is not ticket.sla_resolution_met:
            ticket.sla_resolution_met = resolution
            if resolution is False:
                breached.append(SLAType.RESOLUTION)

        return breached

    def calculate_state(
        self,
        created_at: datetime,
        deadline: datetime,
        current_time: datetime,
        met: Optional[bool],
    ) -> Tuple[SLAState, float, float]:
        """
        Current state of one clock.

        Returns:
            Tuple of (state, remaining_seconds, percentage_remaining)
        """
        if met is True:
            return SLAState.MET, 0.0, 0.0
        if met is False:
            return SLAState.BREACHED, 0.0, 0.0

        remaining = (deadline - current_time).total_seconds()
        total = (deadline - created_at).total_seconds()
        percentage = 0.0 if total <= 0 else max(0.0, min(100.0, remaining / total * 100))

        if remaining <= 0:
            return SLAState.BREACHED, 0.0, 0.0
        if percentage <= self._at_risk_threshold:
            return SLAState.AT_RISK, remaining, percentage
        return SLAState.ON_TRACK, remaining, percentage

    def clock_status(self, ticket: Ticket, sla_type: str, now: datetime) -> SLAClockStatus:
        """Build the read-side view of a ticket's response or resolution clock."""
        if sla_type == SLAType.RESPONSE:
            deadline, met, met_at = (
                ticket.sla_response_due, ticket.sla_response_met, ticket.first_response_at
            )
        else:
            deadline, met, met_at = (
                ticket.sla_resolution_due, ticket.sla_resolution_met, ticket.resolved_at
            )

        if deadline is None:
            return SLAClockStatus(sla_type, None, 0.0, 0.0, SLAState.ON_TRACK, met, met_at)

        state, remaining, percentage = self.calculate_state(
            ticket.created_at, deadline, now, met
        )
        return SLAClockStatus(sla_type, deadline, remaining, percentage, state, met, met_at)
