"""
SLA Application Layer
======================

Application layer for ticket workflow and SLA tracking.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization
- Locks: Per-ticket serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from sla.application.locks import TicketLockRegistry
from sla.application.services import (
    TicketWorkflowService,
    AutomationSweepService,
    SLAReportingService,
    ITicketStorage,
    ITaskStorage,
    ISLAConfigProvider,
    NewTicket,
    TicketChanges,
    TicketOperationResult,
    TicketSLAView,
    SweepSummary,
    TicketOutcomeCount,
    SLAComplianceReport,
)

__all__ = [
    # Services
    "TicketWorkflowService",
    "AutomationSweepService",
    "SLAReportingService",
    "TicketLockRegistry",
    # Repository Interfaces
    "ITicketStorage",
    "ITaskStorage",
    "ISLAConfigProvider",
    # Commands / Results
    "NewTicket",
    "TicketChanges",
    "TicketOperationResult",
    "TicketSLAView",
    "SweepSummary",
    "TicketOutcomeCount",
    "SLAComplianceReport",
]
