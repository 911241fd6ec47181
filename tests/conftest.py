"""
Pytest configuration and fixtures for testing.

Provides:
- FixedClock pinned to Monday 2024-01-15 10:00 UTC
- InMemoryStorage implementing every storage interface
- Fake notifier, task creator and SLA config provider
- Factories for tickets and rules
- FastAPI app wired to the fakes

Usage:
    pytest tests/ -v
"""

import asyncio
import copy
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from itertools import count
from typing import Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from automation.application import (
    ActionExecutor, AutomationEngine, IAutomationStorage, INotifier,
    ITaskCreator, IUserDirectory, RuleEvaluator,
)
from automation.domain import AutomationLog, AutomationRule
from config import Priority
from core import ConcurrencyConflictException, IClock
from sla.application import (
    AutomationSweepService, ISLAConfigProvider, ITaskStorage, ITicketStorage,
    TicketLockRegistry, TicketOutcomeCount, TicketWorkflowService,
)
from sla.domain import (
    BusinessCalendar, SLAConfig, SLAProfile, Task, TaskRequest, Ticket,
    TicketHistoryRecord, TicketStatusMachine,
)

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)  # Monday

STANDARD_PROFILE_ID = "profile-standard"
ROUND_THE_CLOCK_PROFILE_ID = "profile-24x7"
AGENT_ID = "agent-1"
LEAD_ID = "lead-1"


# ============================================================================
# Collaborator Fakes
# ============================================================================

class FixedClock(IClock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant

    def advance(self, **kwargs) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now


class FakeConfigProvider(ISLAConfigProvider):
    def __init__(self, config: Optional[SLAConfig] = None):
        self.config = config or SLAConfig(business_hours=BusinessCalendar(timezone="UTC"))
        self.is_loaded = True

    def get_config(self) -> SLAConfig:
        return self.config


class FakeNotifier(INotifier):
    """Records messages; ``fail`` makes every send report failure."""

    def __init__(self):
        self.sent: List[dict] = []
        self.fail = False
        self.hang = False

    async def send(self, channel: str, recipient: str, message: str) -> bool:
        if self.hang:
            await asyncio.sleep(10)
        if self.fail:
            return False
        self.sent.append({"channel": channel, "recipient": recipient, "message": message})
        return True


class FakeTaskCreator(ITaskCreator):
    def __init__(self):
        self.task_requests: List[TaskRequest] = []

    async def create_task(self, task_request: TaskRequest) -> str:
        self.task_requests.append(task_request)
        return f"task-{len(self.task_requests)}"


class InMemoryStorage(ITicketStorage, ITaskStorage, IAutomationStorage, IUserDirectory):
    """
    Dict-backed storage with the same contract as SQLAlchemyStorage.

    ``atomic`` snapshots every table and restores it when the block raises.
    ``conflicts`` makes the next N save_ticket calls fail with a version
    conflict, as if another writer committed first; tickets in
    ``conflicting_ids`` conflict on every save.
    """

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.profiles: Dict[str, SLAProfile] = {}
        self.contracts: Dict[str, str] = {}
        self.rules: List[AutomationRule] = []
        self.tasks: Dict[str, Task] = {}
        self.history: List[TicketHistoryRecord] = []
        self.logs: List[AutomationLog] = []
        self.users: Set[str] = set()
        self.conflicts = 0
        self.conflicting_ids: Set[str] = set()
        self.contract_dates: List[date] = []
        self.saves = 0
        self._numbers = count(1)

    @asynccontextmanager
    async def atomic(self):
        state = copy.deepcopy((self.tickets, self.tasks, self.history, self.logs))
        try:
            yield
        except BaseException:
            self.tickets, self.tasks, self.history, self.logs = state
            raise

    # ---------- tickets ----------

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        stored = replace(ticket, ticket_number=next(self._numbers), version=1,
                         tags=set(ticket.tags))
        self.tickets[stored.id] = copy.deepcopy(stored)
        return stored

    async def load_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def save_ticket(self, ticket: Ticket) -> Ticket:
        stored = self.tickets[ticket.id]
        if ticket.id in self.conflicting_ids:
            raise ConcurrencyConflictException(ticket.id, ticket.version)
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrencyConflictException(ticket.id, ticket.version)
        if stored.version != ticket.version:
            raise ConcurrencyConflictException(ticket.id, ticket.version)
        saved = replace(ticket, version=ticket.version + 1, tags=set(ticket.tags))
        self.tickets[ticket.id] = copy.deepcopy(saved)
        self.saves += 1
        return saved

    async def list_active_tickets(self) -> List[Ticket]:
        active = [t for t in self.tickets.values() if t.is_active]
        return [copy.deepcopy(t) for t in sorted(active, key=lambda t: t.ticket_number)]

    async def append_history(self, records) -> None:
        self.history.extend(records)

    async def load_sla_profile(self, profile_id: str) -> Optional[SLAProfile]:
        return self.profiles.get(profile_id)

    async def load_default_sla_profile(self) -> Optional[SLAProfile]:
        return next((p for p in self.profiles.values() if p.is_default), None)

    async def load_contract_profile(self, organization_id: str, on: date) -> Optional[SLAProfile]:
        self.contract_dates.append(on)
        profile_id = self.contracts.get(organization_id)
        return self.profiles.get(profile_id) if profile_id else None

    async def list_sla_profiles(self) -> List[SLAProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)

    async def count_ticket_outcomes(self) -> List[TicketOutcomeCount]:
        groups = Counter(
            (t.status, t.priority, t.sla_response_met, t.sla_resolution_met)
            for t in self.tickets.values()
        )
        return [TicketOutcomeCount(*key, count=n) for key, n in groups.items()]

    # ---------- automation ----------

    async def load_active_rules(self) -> List[AutomationRule]:
        return sorted((r for r in self.rules if r.is_active), key=lambda r: r.sort_key)

    async def save_rule(self, rule: AutomationRule) -> None:
        for index, stored in enumerate(self.rules):
            if stored.id == rule.id:
                self.rules[index] = rule

    async def append_automation_log(self, log: AutomationLog) -> AutomationLog:
        stored = replace(log, id=str(uuid.uuid4()))
        self.logs.append(stored)
        return stored

    async def rule_ran_since(self, rule_id: str, since: datetime) -> bool:
        return any(log.rule_id == rule_id and log.created_at >= since for log in self.logs)

    # ---------- tasks ----------

    async def list_due_tasks(self, now: datetime) -> List[Task]:
        return [copy.deepcopy(t) for t in self.tasks.values() if t.is_overdue(now)]

    async def save_task(self, task: Task) -> Task:
        self.tasks[task.id] = copy.deepcopy(task)
        return task

    # ---------- users ----------

    async def user_exists(self, user_id: str) -> bool:
        return user_id in self.users

    # ---------- test helpers ----------

    def history_for(self, ticket_id: str, action: Optional[str] = None) -> List[TicketHistoryRecord]:
        return [
            h for h in self.history
            if h.ticket_id == ticket_id and (action is None or h.action == action)
        ]


# ============================================================================
# Factories
# ============================================================================

_rule_ids = count(1)


def make_rule(trigger_type: str, action_type: str, conditions=None,
              action_config: Optional[dict] = None, **kwargs) -> AutomationRule:
    """Rule whose created_at follows creation order of the calls."""
    number = next(_rule_ids)
    return AutomationRule(
        id=kwargs.pop("id", f"rule-{number}"),
        name=kwargs.pop("name", f"Rule {number}"),
        trigger_type=trigger_type,
        action_type=action_type,
        trigger_conditions=conditions,
        action_config=action_config or {},
        created_at=kwargs.pop("created_at", T0 - timedelta(days=30) + timedelta(seconds=number)),
        **kwargs,
    )


def make_ticket(**kwargs) -> Ticket:
    created_at = kwargs.pop("created_at", T0)
    return Ticket(
        id=kwargs.pop("id", str(uuid.uuid4())),
        ticket_number=kwargs.pop("ticket_number", 1),
        subject=kwargs.pop("subject", "Printer on fire"),
        created_at=created_at,
        updated_at=kwargs.pop("updated_at", created_at),
        **kwargs,
    )


def standard_profile(**kwargs) -> SLAProfile:
    data = dict(
        id=STANDARD_PROFILE_ID, name="Standard",
        response_time_minutes=240, resolution_time_minutes=1440,
        business_hours_only=True, is_default=True,
    )
    data.update(kwargs)
    return SLAProfile(**data)


def round_the_clock_profile(**kwargs) -> SLAProfile:
    data = dict(
        id=ROUND_THE_CLOCK_PROFILE_ID, name="24x7",
        response_time_minutes=240, resolution_time_minutes=1440,
        business_hours_only=False,
        priority_multipliers={Priority.HIGH: 0.5},
    )
    data.update(kwargs)
    return SLAProfile(**data)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def config_provider() -> FakeConfigProvider:
    return FakeConfigProvider()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def task_creator() -> FakeTaskCreator:
    return FakeTaskCreator()


@pytest.fixture
def storage() -> InMemoryStorage:
    store = InMemoryStorage()
    for profile in (standard_profile(), round_the_clock_profile()):
        store.profiles[profile.id] = profile
    store.users.update({AGENT_ID, LEAD_ID})
    return store


@pytest.fixture
def status_machine() -> TicketStatusMachine:
    return TicketStatusMachine()


@pytest.fixture
def executor(storage, notifier, task_creator, status_machine) -> ActionExecutor:
    return ActionExecutor(
        status_machine=status_machine,
        users=storage,
        notifier=notifier,
        task_creator=task_creator,
        notifier_timeout=0.2,
        task_creator_timeout=0.2,
    )


@pytest.fixture
def engine(storage, executor) -> AutomationEngine:
    return AutomationEngine(storage, RuleEvaluator(), executor)


@pytest.fixture
def workflow(storage, engine, config_provider, clock, status_machine) -> TicketWorkflowService:
    return TicketWorkflowService(
        storage=storage,
        engine=engine,
        config_provider=config_provider,
        clock=clock,
        locks=TicketLockRegistry(),
        status_machine=status_machine,
        max_retries=3,
    )


@pytest.fixture
def sweep(workflow, storage, engine, clock) -> AutomationSweepService:
    return AutomationSweepService(
        workflow=workflow,
        storage=storage,
        task_storage=storage,
        automation_storage=storage,
        engine=engine,
        clock=clock,
    )


@pytest.fixture
def app(storage, notifier, task_creator, config_provider, clock):
    """Application wired to the in-memory fakes (lifespan not run)."""
    from main import create_app
    from sla.interfaces.controllers import get_storage, get_task_creator
    from sla.services import Runtime

    runtime = Runtime(config_provider=config_provider, notifier=notifier, clock=clock)
    application = create_app(runtime)
    application.dependency_overrides[get_storage] = lambda: storage
    application.dependency_overrides[get_task_creator] = lambda: task_creator
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
