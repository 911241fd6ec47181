"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from config import (
    TicketStatus, Priority, TriggerType,
    ACTIVE_STATUSES, DEFAULT_PRIORITY_MULTIPLIERS
)


@dataclass(frozen=True)
class SLAProfile:
    """
    Named bundle of response/resolution targets and priority multipliers.

    Owned by configuration; tickets reference it by id and never mutate it.
    """

    id: str
    name: str
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool = True
    priority_multipliers: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MULTIPLIERS)
    )
    is_default: bool = False
    description: Optional[str] = None

    def multiplier_for(self, priority: str) -> float:
        """Multiplier for a priority; 1.0 when the profile does not list it."""
        return float(self.priority_multipliers.get(priority, 1.0))


@dataclass
class Ticket:
    """
    Ticket entity carrying the fields the SLA engine and rules work on.

    SLA fields are mutated only by the SLA calculator and the status machine.
    """

    id: str
    ticket_number: int
    subject: str
    created_at: datetime
    updated_at: datetime
    status: str = TicketStatus.OPEN
    priority: str = Priority.MEDIUM
    description: Optional[str] = None
    organization_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None

    # SLA tracking
    sla_profile_id: Optional[str] = None
    sla_response_due: Optional[datetime] = None
    sla_resolution_due: Optional[datetime] = None
    sla_response_met: Optional[bool] = None
    sla_resolution_met: Optional[bool] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    tags: Set[str] = field(default_factory=set)
    version: int = 0

    def __post_init__(self):
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

    @property
    def is_active(self) -> bool:
        """Ticket is still being worked on."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)

    def snapshot(self) -> "Ticket":
        """Independent copy, safe to hand to events and action working copies."""
        return copy.deepcopy(self)

    def field_value(self, name: str) -> Any:
        """Read a field by name for rule conditions."""
        return getattr(self, name)


@dataclass
class Task:
    """Follow-up task, optionally linked to a ticket."""

    id: str
    title: str
    ticket_id: Optional[str] = None
    description: Optional[str] = None
    priority: str = Priority.MEDIUM
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_notified_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def is_overdue(self, now: datetime) -> bool:
        """Due date passed, not completed and no task_due event emitted yet."""
        return (
            self.due_date is not None
            and self.due_date <= now
            and not self.is_completed
            and self.due_notified_at is None
        )

    def snapshot(self) -> "Task":
        return copy.deepcopy(self)

    def field_value(self, name: str) -> Any:
        return getattr(self, name)


@dataclass(frozen=True)
class TaskRequest:
    """Parameters handed to the task creator collaborator."""

    title: str
    ticket_id: Optional[str] = None
    description: Optional[str] = None
    priority: str = Priority.MEDIUM
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None


@dataclass(frozen=True)
class TicketHistoryRecord:
    """Append-only audit entry for a ticket change."""

    ticket_id: str
    action: str
    created_at: datetime
    user_id: Optional[str] = None
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Event:
    """
    Ephemeral event consumed synchronously by the rule evaluator.

    previous_ticket is None for ticket_created; task is set only for
    task_due; sla_type is set only for sla_breach.
    """

    type: str
    timestamp: datetime
    ticket: Optional[Ticket] = None
    previous_ticket: Optional[Ticket] = None
    task: Optional[Task] = None
    sla_type: Optional[str] = None

    @property
    def subject(self) -> Any:
        """The entity conditions are evaluated against."""
        if self.type == TriggerType.TASK_DUE:
            return self.task
        return self.ticket

    @property
    def previous_subject(self) -> Any:
        if self.type == TriggerType.TASK_DUE:
            return None
        return self.previous_ticket
