"""
SLA Services
============

Wiring of the application services for the HTTP layer and the
background sweep job.

Process-wide collaborators (config manager, notifier, lock registry,
clock) live in a Runtime created once at startup; storage and the task
creator are bound to one database session and built per request or per
sweep run.
"""

import uuid
from dataclasses import dataclass, field
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from automation.application import (
    ActionExecutor, AutomationEngine, INotifier, ITaskCreator, RuleEvaluator,
)
from config import settings
from core import ApplicationException, IClock, SystemClock
from infrastructure.database import get_session_context
from sla.application import (
    AutomationSweepService, ISLAConfigProvider, SLAReportingService, SweepSummary,
    TicketLockRegistry, TicketWorkflowService,
)
from sla.domain import TicketStatusMachine
from sla.infrastructure import SQLAlchemyStorage, SQLAlchemyTaskCreator
from shared.infrastructure.logging import (
    bind_correlation_id, get_logger, log_latency, reset_correlation_id,
)

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Collaborators shared by every request and sweep run."""

    config_provider: ISLAConfigProvider
    notifier: INotifier
    clock: IClock = field(default_factory=SystemClock)
    locks: TicketLockRegistry = field(default_factory=TicketLockRegistry)
    status_machine: TicketStatusMachine = field(default_factory=TicketStatusMachine)


@dataclass
class Services:
    workflow: TicketWorkflowService
    sweep: AutomationSweepService
    engine: AutomationEngine
    reporting: SLAReportingService


def build_services(runtime: Runtime, storage, task_creator: ITaskCreator) -> Services:
    """
    Assemble services over one storage object.

    ``storage`` must implement ITicketStorage, ITaskStorage,
    IAutomationStorage and IUserDirectory (SQLAlchemyStorage does).
    """
    executor = ActionExecutor(
        status_machine=runtime.status_machine,
        users=storage,
        notifier=runtime.notifier,
        task_creator=task_creator,
        notifier_timeout=runtime.notifier.delivery_budget(settings.notifier_timeout_seconds),
        task_creator_timeout=settings.task_creator_timeout_seconds,
    )
    engine = AutomationEngine(storage, RuleEvaluator(), executor)
    workflow = TicketWorkflowService(
        storage=storage,
        engine=engine,
        config_provider=runtime.config_provider,
        clock=runtime.clock,
        locks=runtime.locks,
        status_machine=runtime.status_machine,
        max_retries=settings.ticket_save_retries,
    )
    sweep = AutomationSweepService(
        workflow=workflow,
        storage=storage,
        task_storage=storage,
        automation_storage=storage,
        engine=engine,
        clock=runtime.clock,
    )
    return Services(
        workflow=workflow,
        sweep=sweep,
        engine=engine,
        reporting=SLAReportingService(storage),
    )


class AutomationSweepJob:
    """
    Scheduler job: one session, one sweep.

    Failures are logged and swallowed so the interval job keeps running;
    the next tick retries whatever was left undone.
    """

    def __init__(
        self,
        runtime: Runtime,
        session_context: Callable[[], AsyncContextManager[AsyncSession]] = get_session_context,
    ):
        self._runtime = runtime
        self._session_context = session_context

    async def __call__(self) -> Optional[SweepSummary]:
        token = bind_correlation_id(f"sweep-{uuid.uuid4()}")
        try:
            with log_latency(logger, "automation_sweep"):
                async with self._session_context() as session:
                    storage = SQLAlchemyStorage(session)
                    services = build_services(
                        self._runtime, storage, SQLAlchemyTaskCreator(session)
                    )
                    return await services.sweep.run()
        except (ApplicationException, SQLAlchemyError) as e:
            logger.error(
                "Automation sweep failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return None
        finally:
            reset_correlation_id(token)
