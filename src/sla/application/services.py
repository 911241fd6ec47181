"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import AsyncContextManager, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from automation.application.services import AutomationEngine, EngineResult, IAutomationStorage
from automation.domain import AutomationLog, AutomationRule, next_due
from config import (
    HistoryAction, Priority, SLAType, TicketStatus, TriggerType,
    VALID_PRIORITIES, VALID_STATUSES,
)
from core import (
    ConcurrencyConflictException, IClock, MalformedRuleConditionException,
    MissingSLAProfileException, RepositoryException, ResourceNotFoundException,
    ValidationException,
)
from sla.application.locks import TicketLockRegistry
from sla.domain import (
    Event, SLACalculator, SLAClockStatus, SLAConfig, SLAProfile, Task, Ticket,
    TicketHistoryRecord, TicketStatusMachine,
)
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketStorage(ABC):
    """Interface for ticket, profile and history persistence."""

    @abstractmethod
    def atomic(self) -> AsyncContextManager[None]:
        """Scope whose writes are discarded together when it raises."""

    @abstractmethod
    async def create_ticket(self, ticket: Ticket) -> Ticket:
        """Insert a ticket, allocating its ticket_number."""

    @abstractmethod
    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]:
        """Load a ticket for modification."""

    @abstractmethod
    async def save_ticket(self, ticket: Ticket) -> Ticket:
        """
        Persist a modified ticket.

        Raises ConcurrencyConflictException when the stored version no
        longer equals ``ticket.version``; returns the ticket with its
        version incremented.
        """

    @abstractmethod
    async def list_active_tickets(self) -> List[Ticket]:
        """Tickets whose status is still active."""

    @abstractmethod
    async def append_history(self, records: Iterable[TicketHistoryRecord]) -> None:
        """Append audit records."""

    @abstractmethod
    async def load_sla_profile(self, profile_id: str) -> Optional[SLAProfile]:
        """Get a profile by id."""

    @abstractmethod
    async def load_default_sla_profile(self) -> Optional[SLAProfile]:
        """Get the profile flagged as default."""

    @abstractmethod
    async def load_contract_profile(self, organization_id: str, on: date) -> Optional[SLAProfile]:
        """Profile of the organization's contract active on the given day, if any."""

    @abstractmethod
    async def list_sla_profiles(self) -> List[SLAProfile]:
        """All profiles ordered by name."""

    @abstractmethod
    async def count_ticket_outcomes(self) -> List["TicketOutcomeCount"]:
        """Ticket counts grouped by status, priority and both SLA met flags."""


class ITaskStorage(ABC):
    """Interface for follow-up task access."""

    @abstractmethod
    async def list_due_tasks(self, now: datetime) -> List[Task]:
        """Overdue, uncompleted tasks not yet reported."""

    @abstractmethod
    async def save_task(self, task: Task) -> Task:
        """Persist task changes."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


# ========== Inputs / Results ==========

@dataclass
class NewTicket:
    subject: str
    priority: str = Priority.MEDIUM
    status: str = TicketStatus.OPEN
    description: Optional[str] = None
    organization_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_by_id: Optional[str] = None
    sla_profile_id: Optional[str] = None
    tags: Set[str] = field(default_factory=set)


@dataclass
class TicketChanges:
    """Partial update; None leaves a field unchanged."""

    subject: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_id: Optional[str] = None
    organization_id: Optional[str] = None
    add_tags: Set[str] = field(default_factory=set)


@dataclass
class TicketOperationResult:
    """Committed ticket plus what the operation wrote."""

    ticket: Ticket
    events: List[Event] = field(default_factory=list)
    history: List[TicketHistoryRecord] = field(default_factory=list)
    logs: List[AutomationLog] = field(default_factory=list)

    @property
    def breaches(self) -> List[str]:
        return [e.sla_type for e in self.events if e.type == TriggerType.SLA_BREACH]


@dataclass
class TicketSLAView:
    ticket: Ticket
    response: SLAClockStatus
    resolution: SLAClockStatus


@dataclass
class SweepSummary:
    tickets_evaluated: int = 0
    breaches: int = 0
    tasks_due: int = 0
    scheduled_rules_run: int = 0
    repeats_skipped: int = 0
    errors: int = 0
    logs: List[AutomationLog] = field(default_factory=list)


@dataclass(frozen=True)
class TicketOutcomeCount:
    """Number of tickets sharing one status, priority and pair of met flags."""

    status: str
    priority: str
    sla_response_met: Optional[bool]
    sla_resolution_met: Optional[bool]
    count: int


def _rate(met: int, breached: int) -> float:
    decided = met + breached
    return round(met / decided * 100, 2) if decided else 0.0


@dataclass
class SLAComplianceReport:
    """
    Compliance across all tickets.

    Rates are percentages over tickets whose flag is decided; tickets still
    running (flag None) count in neither numerator nor denominator.
    """

    total_tickets: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    response_met: int = 0
    response_breached: int = 0
    resolution_met: int = 0
    resolution_breached: int = 0

    @property
    def response_rate(self) -> float:
        return _rate(self.response_met, self.response_breached)

    @property
    def resolution_rate(self) -> float:
        return _rate(self.resolution_met, self.resolution_breached)


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


# ========== Application Services ==========

class TicketWorkflowService:
    """
    Per-ticket transactional unit.

    Every mutation of an existing ticket runs under the ticket's lock, loads
    the ticket fresh, applies the domain change, feeds the resulting events
    to the automation engine and saves once. A version conflict on save
    discards the attempt and reruns it, up to ``max_retries`` times.

    Breaches caused by automation actions are recorded and evaluated against
    sla_breach rules; follow-up rounds stop after ``MAX_BREACH_ROUNDS``.
    """

    MAX_BREACH_ROUNDS = 2

    def __init__(
        self,
        storage: ITicketStorage,
        engine: AutomationEngine,
        config_provider: ISLAConfigProvider,
        clock: IClock,
        locks: TicketLockRegistry,
        status_machine: Optional[TicketStatusMachine] = None,
        max_retries: int = 3,
    ):
        self._storage = storage
        self._engine = engine
        self._config_provider = config_provider
        self._clock = clock
        self._locks = locks
        self._status_machine = status_machine or TicketStatusMachine()
        self._max_retries = max(1, max_retries)

    @property
    def calculator(self) -> SLACalculator:
        # Built per call so hot-reloaded calendars apply immediately
        return SLACalculator.from_config(self._config_provider.get_config())

    # ---------- profile resolution ----------

    async def resolve_profile(
        self,
        profile_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SLAProfile:
        """
        Explicit profile, else the organization's contract profile, else default.

        Raises:
            ResourceNotFoundException: explicit profile id does not exist
            MissingSLAProfileException: nothing resolves and no default exists
        """
        if profile_id:
            profile = await self._storage.load_sla_profile(profile_id)
            if profile is None:
                raise ResourceNotFoundException("SLAProfile", profile_id)
            return profile

        if organization_id:
            today = (now or self._clock.now()).date()
            profile = await self._storage.load_contract_profile(organization_id, today)
            if profile is not None:
                return profile

        profile = await self._storage.load_default_sla_profile()
        if profile is None:
            raise MissingSLAProfileException()
        return profile

    # ---------- operations ----------

    async def create_ticket(self, data: NewTicket) -> TicketOperationResult:
        """Create a ticket, compute its deadlines and run ticket_created rules."""
        self._validate_priority(data.priority)
        self._validate_status(data.status)
        now = self._clock.now()

        ticket = Ticket(
            id=str(uuid.uuid4()),
            ticket_number=0,
            subject=data.subject,
            description=data.description,
            status=data.status,
            priority=data.priority,
            organization_id=data.organization_id,
            assignee_id=data.assignee_id,
            created_by_id=data.created_by_id,
            tags=set(data.tags),
            created_at=now,
            updated_at=now,
        )
        if ticket.is_resolved:
            ticket.resolved_at = now

        try:
            profile = await self.resolve_profile(data.sla_profile_id, data.organization_id, now)
        except MissingSLAProfileException:
            logger.warning("No SLA profile available, ticket created without deadlines",
                           extra={"ticket_id": ticket.id})
            profile = None

        calculator = self.calculator
        if profile is not None:
            calculator.apply_deadlines(ticket, profile)

        async with self._storage.atomic():
            ticket = await self._storage.create_ticket(ticket)
            history = [TicketHistoryRecord(
                ticket_id=ticket.id,
                action=HistoryAction.CREATED,
                created_at=now,
                user_id=data.created_by_id,
                metadata={"ticket_number": ticket.ticket_number,
                          "sla_profile_id": ticket.sla_profile_id},
            )]
            events = [Event(type=TriggerType.TICKET_CREATED, timestamp=now, ticket=ticket.snapshot())]
            result = await self._commit(ticket, events, history, now, calculator, force_save=False)

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": result.ticket.id,
                "ticket_number": result.ticket.ticket_number,
                "priority": result.ticket.priority,
                "sla_profile_id": result.ticket.sla_profile_id,
                "rules_fired": len(result.logs),
            },
        )
        return result

    async def update_ticket(
        self,
        ticket_id: str,
        changes: TicketChanges,
        actor_id: Optional[str] = None,
    ) -> TicketOperationResult:
        """
        Apply a manual update.

        Emits ticket_updated for any change, status_changed when the status
        moved, and sla_breach for clocks found breached. Assigning the ticket
        counts as first response.
        """
        if changes.priority is not None:
            self._validate_priority(changes.priority)

        async def apply(ticket: Ticket, now: datetime) -> TicketOperationResult:
            calculator = self.calculator
            previous = ticket.snapshot()
            history: List[TicketHistoryRecord] = []
            status_event: Optional[Event] = None

            if changes.status is not None:
                transition = self._status_machine.transition(ticket, changes.status, now, actor_id)
                if transition is not None:
                    status_event = transition.event
                    history.extend(transition.history)

            if changes.assignee_id is not None and changes.assignee_id != ticket.assignee_id:
                history.append(TicketHistoryRecord(
                    ticket_id=ticket.id, action=HistoryAction.ASSIGNED, created_at=now,
                    user_id=actor_id, field_name="assignee_id",
                    old_value=ticket.assignee_id, new_value=changes.assignee_id,
                ))
                ticket.assignee_id = changes.assignee_id
                record = self._status_machine.mark_first_response(ticket, now, actor_id)
                if record:
                    history.append(record)

            for name in ("priority", "subject", "description", "organization_id"):
                value = getattr(changes, name)
                if value is None or value == getattr(ticket, name):
                    continue
                history.append(TicketHistoryRecord(
                    ticket_id=ticket.id, action=HistoryAction.UPDATED, created_at=now,
                    user_id=actor_id, field_name=name,
                    old_value=_text(getattr(ticket, name)), new_value=_text(value),
                ))
                setattr(ticket, name, value)

            new_tags = changes.add_tags - ticket.tags
            if new_tags:
                history.append(TicketHistoryRecord(
                    ticket_id=ticket.id, action=HistoryAction.UPDATED, created_at=now,
                    user_id=actor_id, field_name="tags",
                    new_value=",".join(sorted(new_tags)),
                ))
                ticket.tags |= new_tags

            if not history:
                return TicketOperationResult(ticket=ticket)
            ticket.updated_at = now

            events, breach_history = self._breach_events(ticket, calculator, now)
            final = ticket.snapshot()
            leading = [Event(type=TriggerType.TICKET_UPDATED, timestamp=now,
                             ticket=final, previous_ticket=previous)]
            if status_event is not None:
                leading.append(replace(status_event, ticket=final))
            return await self._commit(ticket, leading + events, history + breach_history,
                                      now, calculator)

        return await self._mutate(ticket_id, apply)

    async def mark_first_response(self, ticket_id: str,
                                  actor_id: Optional[str] = None) -> TicketOperationResult:
        """Stamp first_response_at; a ticket already responded to is unchanged."""

        async def apply(ticket: Ticket, now: datetime) -> TicketOperationResult:
            calculator = self.calculator
            previous = ticket.snapshot()
            record = self._status_machine.mark_first_response(ticket, now, actor_id)
            if record is None:
                return TicketOperationResult(ticket=ticket)

            events, breach_history = self._breach_events(ticket, calculator, now)
            updated = Event(type=TriggerType.TICKET_UPDATED, timestamp=now,
                            ticket=ticket.snapshot(), previous_ticket=previous)
            return await self._commit(ticket, [updated] + events, [record] + breach_history,
                                      now, calculator)

        return await self._mutate(ticket_id, apply)

    async def reassign_profile(self, ticket_id: str, profile_id: str,
                               actor_id: Optional[str] = None) -> TicketOperationResult:
        """Switch SLA profile and recompute deadlines and met flags from scratch."""

        async def apply(ticket: Ticket, now: datetime) -> TicketOperationResult:
            calculator = self.calculator
            profile = await self.resolve_profile(profile_id)
            previous = ticket.snapshot()

            calculator.apply_deadlines(ticket, profile)
            ticket.updated_at = now
            history = [TicketHistoryRecord(
                ticket_id=ticket.id, action=HistoryAction.SLA_PROFILE_CHANGED,
                created_at=now, user_id=actor_id, field_name="sla_profile_id",
                old_value=previous.sla_profile_id, new_value=profile.id,
                metadata={
                    "sla_response_due": _text(ticket.sla_response_due),
                    "sla_resolution_due": _text(ticket.sla_resolution_due),
                },
            )]

            events, breach_history = self._breach_events(ticket, calculator, now)
            updated = Event(type=TriggerType.TICKET_UPDATED, timestamp=now,
                            ticket=ticket.snapshot(), previous_ticket=previous)
            return await self._commit(ticket, [updated] + events, history + breach_history,
                                      now, calculator)

        return await self._mutate(ticket_id, apply)

    async def evaluate_sla(self, ticket_id: str,
                           now: Optional[datetime] = None) -> TicketOperationResult:
        """Periodic compliance check of one ticket; saves only when a flag moved."""

        async def apply(ticket: Ticket, current: datetime) -> TicketOperationResult:
            calculator = self.calculator
            flags = (ticket.sla_response_met, ticket.sla_resolution_met)
            events, history = self._breach_events(ticket, calculator, current)
            if flags == (ticket.sla_response_met, ticket.sla_resolution_met):
                return TicketOperationResult(ticket=ticket)
            return await self._commit(ticket, events, history, current, calculator)

        return await self._mutate(ticket_id, apply, now)

    async def apply_scheduled_rule(self, rule: AutomationRule, ticket_id: str,
                                   now: datetime) -> Optional[TicketOperationResult]:
        """Run one scheduled rule against one ticket; None when it did not match."""

        async def apply(ticket: Ticket, current: datetime) -> Optional[TicketOperationResult]:
            result = await self._engine.execute_scheduled(rule, ticket, current)
            if result is None:
                return None
            return await self._persist(result, [], [], current, self.calculator)

        return await self._mutate(ticket_id, apply, now)

    async def get_ticket_sla(self, ticket_id: str) -> TicketSLAView:
        """Read-side view of both SLA clocks."""
        ticket = await self._storage.load_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        now = self._clock.now()
        calculator = self.calculator
        return TicketSLAView(
            ticket=ticket,
            response=calculator.clock_status(ticket, SLAType.RESPONSE, now),
            resolution=calculator.clock_status(ticket, SLAType.RESOLUTION, now),
        )

    # ---------- internals ----------

    @staticmethod
    def _validate_priority(priority: str) -> None:
        if priority not in VALID_PRIORITIES:
            raise ValidationException(f"Invalid priority: {priority}", {"priority": priority})

    @staticmethod
    def _validate_status(status: str) -> None:
        if status not in VALID_STATUSES:
            raise ValidationException(f"Invalid status: {status}", {"status": status})

    @staticmethod
    def _breach_events(ticket: Ticket, calculator: SLACalculator, now: datetime):
        breached = calculator.evaluate_compliance(ticket, now)
        final = ticket.snapshot()
        events = [
            Event(type=TriggerType.SLA_BREACH, timestamp=now, ticket=final, sla_type=sla_type)
            for sla_type in breached
        ]
        history = [
            TicketHistoryRecord(
                ticket_id=ticket.id, action=HistoryAction.SLA_BREACHED, created_at=now,
                field_name=f"sla_{sla_type}_met", new_value="False",
                metadata={"sla_type": sla_type},
            )
            for sla_type in breached
        ]
        for sla_type in breached:
            logger.warning(
                "SLA breached",
                extra={"ticket_id": ticket.id, "sla_type": sla_type, "priority": ticket.priority},
            )
        return events, history

    async def _commit(
        self,
        ticket: Ticket,
        events: List[Event],
        history: List[TicketHistoryRecord],
        now: datetime,
        calculator: SLACalculator,
        force_save: bool = True,
    ) -> TicketOperationResult:
        if events:
            engine_result = await self._engine.process_events(events, ticket)
        else:
            engine_result = EngineResult(ticket=ticket)
        return await self._persist(engine_result, events, history, now, calculator,
                                   force=force_save)

    async def _persist(
        self,
        engine_result: EngineResult,
        events: List[Event],
        history: List[TicketHistoryRecord],
        now: datetime,
        calculator: SLACalculator,
        force: bool = False,
    ) -> TicketOperationResult:
        events = list(events)
        history = list(history)
        pending = engine_result
        rounds = 0
        while pending.changed:
            # Automation may have reopened or resolved the ticket
            breach_events, breach_history = self._breach_events(engine_result.ticket, calculator, now)
            if not breach_events:
                break
            events.extend(breach_events)
            history.extend(breach_history)
            rounds += 1
            if rounds > self.MAX_BREACH_ROUNDS:
                logger.warning(
                    "Breach rules keep changing the ticket, not evaluating further",
                    extra={"ticket_id": engine_result.ticket.id, "rounds": rounds},
                )
                break
            pending = await self._engine.process_events(breach_events, engine_result.ticket)
            engine_result.ticket = pending.ticket
            engine_result.logs.extend(pending.logs)
            engine_result.history.extend(pending.history)

        ticket = engine_result.ticket
        if force or engine_result.changed:
            ticket = await self._storage.save_ticket(ticket)

        all_history = history + engine_result.history
        if all_history:
            await self._storage.append_history(all_history)
        return TicketOperationResult(
            ticket=ticket, events=events, history=all_history, logs=engine_result.logs
        )

    async def _mutate(
        self,
        ticket_id: str,
        apply: Callable[[Ticket, datetime], Awaitable],
        now: Optional[datetime] = None,
    ):
        async with self._locks.hold(ticket_id):
            for attempt in range(1, self._max_retries + 1):
                current = now or self._clock.now()
                try:
                    async with self._storage.atomic():
                        ticket = await self._storage.load_ticket(ticket_id)
                        if ticket is None:
                            raise ResourceNotFoundException("Ticket", ticket_id)
                        return await apply(ticket, current)
                except ConcurrencyConflictException as e:
                    if attempt == self._max_retries:
                        logger.error(
                            "Ticket save conflict, giving up",
                            extra={"ticket_id": ticket_id, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "Ticket save conflict, retrying",
                        extra={"ticket_id": ticket_id, "attempt": attempt,
                               "expected_version": e.details.get("expected_version")},
                    )


class AutomationSweepService:
    """
    Periodic automation tick.

    Run by the scheduler (or on demand): re-evaluates SLA compliance of
    active tickets, emits task_due for overdue tasks and runs scheduled
    rules whose cron window opened since their last run.
    """

    def __init__(
        self,
        workflow: TicketWorkflowService,
        storage: ITicketStorage,
        task_storage: ITaskStorage,
        automation_storage: IAutomationStorage,
        engine: AutomationEngine,
        clock: IClock,
    ):
        self._workflow = workflow
        self._storage = storage
        self._task_storage = task_storage
        self._automation_storage = automation_storage
        self._engine = engine
        self._clock = clock

    async def run(self, now: Optional[datetime] = None) -> SweepSummary:
        now = now or self._clock.now()
        summary = SweepSummary()

        await self._tick_sla(now, summary)
        await self._fire_task_due(now, summary)
        await self._run_scheduled_rules(now, summary)

        logger.info(
            "Automation sweep complete",
            extra={
                "tickets_evaluated": summary.tickets_evaluated,
                "breaches": summary.breaches,
                "tasks_due": summary.tasks_due,
                "scheduled_rules_run": summary.scheduled_rules_run,
                "repeats_skipped": summary.repeats_skipped,
                "errors": summary.errors,
                "logs": len(summary.logs),
            },
        )
        return summary

    async def _tick_sla(self, now: datetime, summary: SweepSummary) -> None:
        for ticket in await self._storage.list_active_tickets():
            try:
                result = await self._workflow.evaluate_sla(ticket.id, now)
            except ResourceNotFoundException:
                continue
            except RepositoryException as e:
                self._ticket_failed(ticket.id, e, summary)
                continue
            summary.tickets_evaluated += 1
            summary.breaches += len(result.breaches)
            summary.logs.extend(result.logs)

    async def _fire_task_due(self, now: datetime, summary: SweepSummary) -> None:
        tasks = await self._task_storage.list_due_tasks(now)
        if not tasks:
            return
        rules = await self._automation_storage.load_active_rules()
        for task in tasks:
            if not task.is_overdue(now):
                continue
            event = Event(type=TriggerType.TASK_DUE, timestamp=now, task=task.snapshot())
            async with self._storage.atomic():
                result = await self._engine.process_task_event(event, rules)
                updated = result.task or task
                updated.due_notified_at = now
                await self._task_storage.save_task(updated)
            summary.tasks_due += 1
            summary.logs.extend(result.logs)

    async def _run_scheduled_rules(self, now: datetime, summary: SweepSummary) -> None:
        rules = sorted(
            (r for r in await self._automation_storage.load_active_rules() if r.is_scheduled),
            key=lambda r: r.sort_key,
        )
        tickets = None
        for rule in rules:
            try:
                window_start = next_due(rule.schedule_cron, rule.last_run_at, now,
                                        rule.id, rule.created_at)
            except MalformedRuleConditionException as e:
                logger.warning("Scheduled rule has invalid cron",
                               extra={"rule_id": rule.id, "error": e.message})
                summary.logs.append(await self._engine.record_failure(
                    rule, e.message, now, {"schedule_cron": rule.schedule_cron}
                ))
                rule.last_run_at = now
                await self._automation_storage.save_rule(rule)
                continue
            if window_start is None or window_start > now:
                continue

            if await self._automation_storage.rule_ran_since(rule.id, window_start):
                # Logs exist for this window but last_run_at was never stored
                logger.warning(
                    "Scheduled rule already ran in this window, skipping repeat",
                    extra={"rule_id": rule.id, "window_start": window_start.isoformat(),
                           "last_run_at": _text(rule.last_run_at)},
                )
                summary.repeats_skipped += 1
                rule.last_run_at = now
                await self._automation_storage.save_rule(rule)
                continue

            if tickets is None:
                tickets = await self._storage.list_active_tickets()
            for ticket in tickets:
                try:
                    result = await self._workflow.apply_scheduled_rule(rule, ticket.id, now)
                except ResourceNotFoundException:
                    continue
                except RepositoryException as e:
                    self._ticket_failed(ticket.id, e, summary, rule.id)
                    continue
                if result is not None:
                    summary.logs.extend(result.logs)

            rule.last_run_at = now
            await self._automation_storage.save_rule(rule)
            summary.scheduled_rules_run += 1
            logger.info("Scheduled rule run", extra={"rule_id": rule.id, "tickets": len(tickets)})

    @staticmethod
    def _ticket_failed(ticket_id: str, error: RepositoryException, summary: SweepSummary,
                       rule_id: Optional[str] = None) -> None:
        summary.errors += 1
        logger.error(
            "Sweep skipped ticket after storage failure",
            extra={"ticket_id": ticket_id, "rule_id": rule_id,
                   "error_type": type(error).__name__, "error": error.message},
        )


class SLAReportingService:
    """Read-only queries over profiles and ticket compliance."""

    def __init__(self, storage: ITicketStorage):
        self._storage = storage

    async def list_profiles(self) -> List[SLAProfile]:
        return await self._storage.list_sla_profiles()

    async def compliance_report(self) -> SLAComplianceReport:
        report = SLAComplianceReport()
        for row in await self._storage.count_ticket_outcomes():
            report.total_tickets += row.count
            report.by_status[row.status] = report.by_status.get(row.status, 0) + row.count
            report.by_priority[row.priority] = report.by_priority.get(row.priority, 0) + row.count
            if row.sla_response_met is True:
                report.response_met += row.count
            elif row.sla_response_met is False:
                report.response_breached += row.count
            if row.sla_resolution_met is True:
                report.resolution_met += row.count
            elif row.sla_resolution_met is False:
                report.resolution_breached += row.count

        logger.info(
            "SLA compliance report built",
            extra={
                "total_tickets": report.total_tickets,
                "response_rate": report.response_rate,
                "resolution_rate": report.resolution_rate,
            },
        )
        return report
