"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: Ticket, Task, SLAProfile, TicketHistoryRecord, Event
- Value Objects: BusinessCalendar, SLAConfig, SLADeadlines, SLAClockStatus
- Domain Services: SLACalculator, TicketStatusMachine

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from sla.domain.entities import (
    SLAProfile,
    Ticket,
    Task,
    TaskRequest,
    TicketHistoryRecord,
    Event,
)
from sla.domain.value_objects import (
    BusinessCalendar,
    SLAConfig,
    SLAProfileConfig,
    SLADeadlines,
    SLAClockStatus,
    SLACalculator,
)
from sla.domain.status_machine import TicketStatusMachine, TransitionResult

__all__ = [
    # Entities
    "SLAProfile",
    "Ticket",
    "Task",
    "TaskRequest",
    "TicketHistoryRecord",
    "Event",
    # Value Objects & Services
    "BusinessCalendar",
    "SLAConfig",
    "SLAProfileConfig",
    "SLADeadlines",
    "SLAClockStatus",
    "SLACalculator",
    "TicketStatusMachine",
    "TransitionResult",
]
