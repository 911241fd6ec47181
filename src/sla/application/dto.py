"""
SLA Application DTOs
=====================

Data Transfer Objects for the ticket and automation API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional, Literal
from datetime import datetime

from automation.domain import AutomationLog
from sla.application.services import (
    NewTicket, SLAComplianceReport, SweepSummary, TicketChanges,
    TicketOperationResult, TicketSLAView,
)
from sla.domain import SLAClockStatus, SLAProfile, Ticket


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "critical"]
TicketStatusStr = Literal["open", "pending", "in_progress", "waiting", "resolved", "closed"]
SLATypeStr = Literal["response", "resolution"]
SLAStateStr = Literal["on_track", "at_risk", "breached", "met"]
LogStatusStr = Literal["success", "failed", "skipped"]


def _clean_tags(v: List[str]) -> List[str]:
    tags = [t.strip() for t in v if t and t.strip()]
    return sorted(set(tags))


# ========== Request DTOs ==========

class TicketCreateDTO(BaseModel):
    """DTO for creating a ticket."""
    subject: str = Field(..., min_length=1, max_length=500, description="Ticket subject")
    description: Optional[str] = Field(None, description="Ticket body")
    priority: PriorityStr = Field(default="medium", description="Ticket priority")
    status: TicketStatusStr = Field(default="open", description="Initial status")
    organization_id: Optional[str] = Field(None, description="Requesting organization")
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None
    sla_profile_id: Optional[str] = Field(
        None, description="Explicit SLA profile; defaults to contract or default profile"
    )
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)

    def to_command(self) -> NewTicket:
        return NewTicket(
            subject=self.subject,
            description=self.description,
            priority=self.priority,
            status=self.status,
            organization_id=self.organization_id,
            assignee_id=self.assignee_id,
            created_by_id=self.created_by_id,
            sla_profile_id=self.sla_profile_id,
            tags=set(self.tags),
        )


class TicketUpdateDTO(BaseModel):
    """DTO for updating a ticket; omitted fields stay unchanged."""
    subject: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TicketStatusStr] = None
    priority: Optional[PriorityStr] = None
    assignee_id: Optional[str] = None
    organization_id: Optional[str] = None
    add_tags: List[str] = Field(default_factory=list)
    actor_id: Optional[str] = Field(None, description="User performing the update")

    @field_validator("add_tags")
    @classmethod
    def validate_add_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)

    def to_command(self) -> TicketChanges:
        return TicketChanges(
            subject=self.subject,
            description=self.description,
            status=self.status,
            priority=self.priority,
            assignee_id=self.assignee_id,
            organization_id=self.organization_id,
            add_tags=set(self.add_tags),
        )


class FirstResponseDTO(BaseModel):
    actor_id: Optional[str] = None


class SLAProfileAssignDTO(BaseModel):
    """DTO for switching a ticket's SLA profile."""
    sla_profile_id: str = Field(..., min_length=1)
    actor_id: Optional[str] = None


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Ticket as returned by mutation endpoints."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_number: int
    subject: str
    description: Optional[str] = None
    status: TicketStatusStr
    priority: PriorityStr
    organization_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None
    sla_profile_id: Optional[str] = None
    sla_response_due: Optional[datetime] = None
    sla_resolution_due: Optional[datetime] = None
    sla_response_met: Optional[bool] = None
    sla_resolution_met: Optional[bool] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketResponse":
        data = {name: getattr(ticket, name) for name in cls.model_fields if name != "tags"}
        return cls(**data, tags=sorted(ticket.tags))


class AutomationLogResponse(BaseModel):
    """Response model for one automation log row."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    rule_id: str
    ticket_id: Optional[str] = None
    task_id: Optional[str] = None
    status: LogStatusStr
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_entity(cls, log: AutomationLog) -> "AutomationLogResponse":
        return cls.model_validate(log)


class TicketOperationResponse(BaseModel):
    """Ticket after a mutation plus the automation it triggered."""
    ticket: TicketResponse
    events: List[str] = Field(default_factory=list, description="Event types emitted")
    breaches: List[SLATypeStr] = Field(default_factory=list)
    automation_logs: List[AutomationLogResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: TicketOperationResult) -> "TicketOperationResponse":
        return cls(
            ticket=TicketResponse.from_entity(result.ticket),
            events=[e.type for e in result.events],
            breaches=result.breaches,
            automation_logs=[AutomationLogResponse.from_entity(log) for log in result.logs],
        )


class SLAStatusResponse(BaseModel):
    """Response model for SLA status of a single clock."""
    sla_type: SLATypeStr
    deadline: Optional[datetime] = Field(None, description="SLA deadline, null when not computed")
    remaining_seconds: float = Field(..., description="Time remaining (0 if breached/met)")
    percentage_remaining: float = Field(..., description="Percentage of time remaining")
    state: SLAStateStr = Field(..., description="Current SLA state")
    met: Optional[bool] = Field(None, description="Recorded compliance flag")
    met_at: Optional[datetime] = Field(None, description="When the milestone was reached")

    @classmethod
    def from_status(cls, status: SLAClockStatus) -> "SLAStatusResponse":
        return cls(
            sla_type=status.sla_type,
            deadline=status.deadline,
            remaining_seconds=status.remaining_seconds,
            percentage_remaining=status.percentage_remaining,
            state=status.state,
            met=status.met,
            met_at=status.met_at,
        )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: str
    ticket_number: int
    priority: PriorityStr
    status: TicketStatusStr
    sla_profile_id: Optional[str] = None
    created_at: datetime
    response_sla: SLAStatusResponse
    resolution_sla: SLAStatusResponse
    overall_state: SLAStateStr = Field(..., description="Worst state of both clocks")
    next_deadline: Optional[datetime] = Field(None, description="Earliest open deadline")

    @classmethod
    def from_view(cls, view: TicketSLAView) -> "TicketSLAResponse":
        clocks = (view.response, view.resolution)
        rank = ["met", "on_track", "at_risk", "breached"]
        overall = max((c.state for c in clocks), key=rank.index)
        pending = [c.deadline for c in clocks if c.deadline is not None and c.met is None]
        return cls(
            ticket_id=view.ticket.id,
            ticket_number=view.ticket.ticket_number,
            priority=view.ticket.priority,
            status=view.ticket.status,
            sla_profile_id=view.ticket.sla_profile_id,
            created_at=view.ticket.created_at,
            response_sla=SLAStatusResponse.from_status(view.response),
            resolution_sla=SLAStatusResponse.from_status(view.resolution),
            overall_state=overall,
            next_deadline=min(pending) if pending else None,
        )


class SweepResponse(BaseModel):
    """Response model for an automation sweep."""
    tickets_evaluated: int
    breaches: int
    tasks_due: int
    scheduled_rules_run: int
    repeats_skipped: int = Field(0, description="Scheduled rules that already ran in their window")
    errors: int = Field(0, description="Tickets skipped after a storage failure")
    automation_logs: List[AutomationLogResponse] = Field(default_factory=list)
    ran_at: datetime

    @classmethod
    def from_summary(cls, summary: SweepSummary, ran_at: datetime) -> "SweepResponse":
        return cls(
            tickets_evaluated=summary.tickets_evaluated,
            breaches=summary.breaches,
            tasks_due=summary.tasks_due,
            scheduled_rules_run=summary.scheduled_rules_run,
            repeats_skipped=summary.repeats_skipped,
            errors=summary.errors,
            automation_logs=[AutomationLogResponse.from_entity(log) for log in summary.logs],
            ran_at=ran_at,
        )


class SLAProfileResponse(BaseModel):
    """Response model for an SLA profile."""
    id: str
    name: str
    description: Optional[str] = None
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool
    priority_multipliers: Dict[str, float]
    is_default: bool

    @classmethod
    def from_entity(cls, profile: SLAProfile) -> "SLAProfileResponse":
        return cls(
            id=profile.id,
            name=profile.name,
            description=profile.description,
            response_time_minutes=profile.response_time_minutes,
            resolution_time_minutes=profile.resolution_time_minutes,
            business_hours_only=profile.business_hours_only,
            priority_multipliers=dict(profile.priority_multipliers),
            is_default=profile.is_default,
        )


class SLAComplianceReportResponse(BaseModel):
    """Response model for the SLA compliance report."""
    total_tickets: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    response_met: int
    response_breached: int
    resolution_met: int
    resolution_breached: int
    response_rate: float = Field(..., description="Percent of decided response clocks that were met")
    resolution_rate: float = Field(..., description="Percent of decided resolution clocks that were met")
    generated_at: datetime

    @classmethod
    def from_report(cls, report: SLAComplianceReport, generated_at: datetime) -> "SLAComplianceReportResponse":
        return cls(
            total_tickets=report.total_tickets,
            by_status=dict(report.by_status),
            by_priority=dict(report.by_priority),
            response_met=report.response_met,
            response_breached=report.response_breached,
            resolution_met=report.resolution_met,
            resolution_breached=report.resolution_breached,
            response_rate=report.response_rate,
            resolution_rate=report.resolution_rate,
            generated_at=generated_at,
        )


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    version: str
    database: str
    sla_config_loaded: bool
    scheduler_running: bool
    timestamp: datetime
