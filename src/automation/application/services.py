"""
Automation Application Services
================================

Rule evaluation and action execution.

Following SOLID principles:
- Single Responsibility: the evaluator decides, the executor acts, the
  engine wires both to storage
- Dependency Inversion: collaborators are the interfaces below
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from automation.domain import (
    AutomationLog, AutomationRule, RuleMatch,
    ConditionInterpreter, parse_conditions,
)
from config import (
    ActionType, AutomationLogStatus, HistoryAction, TriggerType,
    VALID_PRIORITIES,
)
from core import (
    ActionExecutionException, ApplicationException, ExternalServiceException,
    InvalidTransitionException, MalformedRuleConditionException,
    RepositoryException,
)
from sla.domain import (
    Event, Task, TaskRequest, Ticket, TicketHistoryRecord, TicketStatusMachine,
)
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IAutomationStorage(ABC):
    """Interface for rule and automation log persistence."""

    @abstractmethod
    async def load_active_rules(self) -> List[AutomationRule]:
        """Active rules in creation order."""

    @abstractmethod
    async def save_rule(self, rule: AutomationRule) -> None:
        """Persist rule bookkeeping (last_run_at)."""

    @abstractmethod
    async def append_automation_log(self, log: AutomationLog) -> AutomationLog:
        """Append one log row; rows are never updated."""

    @abstractmethod
    async def rule_ran_since(self, rule_id: str, since: datetime) -> bool:
        """Whether the rule has a log row created at or after ``since``."""


class IUserDirectory(ABC):
    """Lookup of assignable users."""

    @abstractmethod
    async def user_exists(self, user_id: str) -> bool:
        """Whether a user id refers to an active user."""


class INotifier(ABC):
    """Best-effort notification channel."""

    @abstractmethod
    async def send(self, channel: str, recipient: str, message: str) -> bool:
        """Deliver a message; False on failure."""

    def delivery_budget(self, default: float) -> float:
        """Upper bound for one send(), retries included."""
        return default


class ITaskCreator(ABC):
    """Creates follow-up tasks."""

    @abstractmethod
    async def create_task(self, task_request: TaskRequest) -> str:
        """Create a task and return its id."""


# ========== Results ==========

@dataclass
class ActionOutcome:
    """
    Result of one action.

    ``ticket``/``task`` hold the committed working copy when the action
    changed it, otherwise None.
    """

    log: AutomationLog
    ticket: Optional[Ticket] = None
    task: Optional[Task] = None
    history: List[TicketHistoryRecord] = field(default_factory=list)


@dataclass
class EngineResult:
    """Final subject state plus everything written while processing events."""

    ticket: Optional[Ticket]
    task: Optional[Task] = None
    logs: List[AutomationLog] = field(default_factory=list)
    history: List[TicketHistoryRecord] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.history)


# ========== Evaluator ==========

class RuleEvaluator:
    """Matches rule trigger conditions against events."""

    def __init__(self, interpreter: Optional[ConditionInterpreter] = None):
        self._interpreter = interpreter or ConditionInterpreter()

    def test(self, rule: AutomationRule, event: Event) -> RuleMatch:
        """Condition check only (trigger type is the caller's concern)."""
        try:
            conditions = parse_conditions(
                rule.trigger_conditions, rule.id,
                task_subject=event.type == TriggerType.TASK_DUE,
            )
            matched = self._interpreter.matches(conditions, event, rule.id)
        except MalformedRuleConditionException as e:
            return RuleMatch(rule=rule, matched=False, error=e.message)
        return RuleMatch(rule=rule, matched=matched)

    def evaluate(self, event: Event, rules: List[AutomationRule]) -> List[RuleMatch]:
        """
        Evaluate active rules of the event's trigger type.

        Returns one RuleMatch per candidate rule in creation order. Inactive
        rules are never candidates. Scheduled rules are matched by the sweep,
        not by events.
        """
        if event.type == TriggerType.SCHEDULED:
            return []
        candidates = sorted(
            (r for r in rules if r.is_active and r.trigger_type == event.type),
            key=lambda r: r.sort_key,
        )
        return [self.test(rule, event) for rule in candidates]


# ========== Executor ==========

class _TemplateFields(dict):
    """format_map source that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_message(template: Any, subject: Any, event: Optional[Event] = None) -> str:
    """
    Fill ``{field}`` placeholders from the subject and event.

    Raises ValueError for templates that cannot be rendered.
    """
    if not isinstance(template, str):
        raise ValueError(f"template must be a string, got {type(template).__name__}")
    values = _TemplateFields({f.name: getattr(subject, f.name) for f in fields(subject)})
    if event is not None:
        values["event_type"] = event.type
        values["sla_type"] = event.sla_type or ""
    try:
        return template.format_map(values)
    except (ValueError, LookupError, AttributeError) as e:
        raise ValueError(f"cannot render template {template!r}: {e}") from e


class ActionExecutor:
    """
    Applies a matched rule's action.

    Every action works on a snapshot of the ticket or task; only a
    successful action hands the snapshot back for the caller to commit.
    Calls to the notifier and task creator are bounded by timeouts and
    their failure is reported as a failed log, never raised.
    """

    TASK_ACTIONS = (ActionType.ASSIGN, ActionType.CHANGE_PRIORITY, ActionType.SEND_NOTIFICATION)

    def __init__(
        self,
        status_machine: TicketStatusMachine,
        users: IUserDirectory,
        notifier: INotifier,
        task_creator: ITaskCreator,
        notifier_timeout: float = 5.0,
        task_creator_timeout: float = 5.0,
    ):
        self._status_machine = status_machine
        self._users = users
        self._notifier = notifier
        self._task_creator = task_creator
        self._notifier_timeout = notifier_timeout
        self._task_creator_timeout = task_creator_timeout
        self._ticket_handlers: Dict[str, Callable[..., Awaitable[ActionOutcome]]] = {
            ActionType.ASSIGN: self._assign,
            ActionType.CHANGE_STATUS: self._change_status,
            ActionType.CHANGE_PRIORITY: self._change_priority,
            ActionType.ADD_TAG: self._add_tag,
            ActionType.SEND_NOTIFICATION: self._send_notification,
            ActionType.CREATE_TASK: self._create_task,
            ActionType.ESCALATE: self._escalate,
        }

    async def execute(self, rule: AutomationRule, subject: Any, event: Event) -> ActionOutcome:
        """
        Execute rule's action against a ticket (or a task for task_due).

        Storage failures propagate; everything else becomes a failed log.
        """
        now = event.timestamp
        is_task = isinstance(subject, Task)
        try:
            if not isinstance(rule.action_config, dict):
                raise ActionExecutionException(rule.action_type, "action_config must be an object")
            if is_task:
                outcome = await self._execute_on_task(rule, subject, event)
            else:
                handler = self._ticket_handlers.get(rule.action_type)
                if handler is None:
                    raise ActionExecutionException(rule.action_type, "unknown action type")
                outcome = await handler(rule, subject.snapshot(), event)
        except RepositoryException:
            raise
        except ApplicationException as e:
            outcome = ActionOutcome(log=self._log(
                rule, subject, AutomationLogStatus.FAILED, e.message, now, e.details
            ))
        except (ValueError, TypeError, LookupError, AttributeError) as e:
            # Rule data the handlers did not anticipate
            outcome = ActionOutcome(log=self._log(
                rule, subject, AutomationLogStatus.FAILED,
                f"{rule.action_type} failed: invalid action_config ({e})", now,
                {"error_type": type(e).__name__},
            ))

        level = "warning" if outcome.log.status == AutomationLogStatus.FAILED else "info"
        getattr(logger, level)(
            "Automation rule executed",
            extra={
                "rule_id": rule.id,
                "action_type": rule.action_type,
                "event_type": event.type,
                "status": outcome.log.status,
                "ticket_id": outcome.log.ticket_id,
                "task_id": outcome.log.task_id,
            },
        )
        return outcome

    # ---------- helpers ----------

    @staticmethod
    def _log(rule: AutomationRule, subject: Any, status: str, message: str,
             now: datetime, metadata: Optional[dict] = None) -> AutomationLog:
        is_task = isinstance(subject, Task)
        return AutomationLog(
            rule_id=rule.id,
            status=status,
            message=message,
            created_at=now,
            ticket_id=subject.ticket_id if is_task else subject.id,
            task_id=subject.id if is_task else None,
            metadata={"action_type": rule.action_type, "trigger_type": rule.trigger_type,
                      **(metadata or {})},
        )

    def _success(self, rule, working, message, now, history=None, metadata=None) -> ActionOutcome:
        log = self._log(rule, working, AutomationLogStatus.SUCCESS, message, now, metadata)
        if isinstance(working, Task):
            return ActionOutcome(log=log, task=working)
        return ActionOutcome(log=log, ticket=working, history=history or [])

    def _skipped(self, rule, subject, message, now, metadata=None) -> ActionOutcome:
        return ActionOutcome(log=self._log(
            rule, subject, AutomationLogStatus.SKIPPED, message, now, metadata
        ))

    @staticmethod
    def _require(config: dict, key: str, action_type: str) -> Any:
        value = config.get(key)
        if value in (None, ""):
            raise ActionExecutionException(action_type, f"action_config.{key} is required")
        return value

    @staticmethod
    def _automation_history(ticket: Ticket, rule: AutomationRule, now: datetime,
                            field_name: str, old: Any, new: Any,
                            action: str = HistoryAction.AUTOMATION) -> TicketHistoryRecord:
        return TicketHistoryRecord(
            ticket_id=ticket.id,
            action=action,
            created_at=now,
            field_name=field_name,
            old_value=None if old is None else str(old),
            new_value=None if new is None else str(new),
            metadata={"rule_id": rule.id, "action_type": rule.action_type},
        )

    async def _ensure_user(self, user_id: str, action_type: str) -> None:
        if not await self._users.user_exists(user_id):
            raise ActionExecutionException(
                action_type, f"assignee {user_id} does not exist", {"assignee_id": user_id}
            )

    async def _notify(self, channel: str, recipient: str, message: str) -> None:
        try:
            delivered = await asyncio.wait_for(
                self._notifier.send(channel, recipient, message),
                timeout=self._notifier_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceException("Notifier", "timed out") from e
        if not delivered:
            raise ExternalServiceException("Notifier", "delivery failed",
                                           {"channel": channel, "recipient": recipient})

    @staticmethod
    def _validate_priority(priority: str, action_type: str) -> str:
        if priority not in VALID_PRIORITIES:
            raise ActionExecutionException(action_type, f"unknown priority '{priority}'")
        return priority

    # ---------- ticket actions ----------

    async def _assign(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        now = event.timestamp
        assignee_id = str(self._require(rule.action_config, "assignee_id", rule.action_type))
        if ticket.assignee_id == assignee_id:
            return self._skipped(rule, ticket, f"already assigned to {assignee_id}", now)
        await self._ensure_user(assignee_id, rule.action_type)

        old = ticket.assignee_id
        ticket.assignee_id = assignee_id
        ticket.updated_at = now
        history = [self._automation_history(
            ticket, rule, now, "assignee_id", old, assignee_id, HistoryAction.ASSIGNED
        )]
        return self._success(rule, ticket, f"assigned to {assignee_id}", now, history)

    async def _change_status(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        now = event.timestamp
        status = self._require(rule.action_config, "status", rule.action_type)
        try:
            result = self._status_machine.transition(ticket, status, now)
        except InvalidTransitionException as e:
            raise ActionExecutionException(rule.action_type, e.message, e.details) from e
        if result is None:
            return self._skipped(rule, ticket, f"status already {status}", now)

        history = [
            replace(record, metadata={**record.metadata, "rule_id": rule.id})
            for record in result.history
        ]
        return self._success(rule, ticket, f"status changed to {status}", now, history)

    async def _change_priority(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        now = event.timestamp
        priority = self._validate_priority(
            self._require(rule.action_config, "priority", rule.action_type), rule.action_type
        )
        if ticket.priority == priority:
            return self._skipped(rule, ticket, f"priority already {priority}", now)

        old = ticket.priority
        ticket.priority = priority
        ticket.updated_at = now
        history = [self._automation_history(ticket, rule, now, "priority", old, priority)]
        return self._success(rule, ticket, f"priority changed to {priority}", now, history)

    async def _add_tag(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        now = event.timestamp
        tag = str(self._require(rule.action_config, "tag", rule.action_type))
        if tag in ticket.tags:
            return self._skipped(rule, ticket, f"tag '{tag}' already present", now, {"tag": tag})

        ticket.tags.add(tag)
        ticket.updated_at = now
        history = [self._automation_history(ticket, rule, now, "tags", None, tag)]
        return self._success(rule, ticket, f"tag '{tag}' added", now, history, {"tag": tag})

    async def _send_notification(self, rule, subject: Any, event: Event) -> ActionOutcome:
        now = event.timestamp
        config = rule.action_config
        channel = self._require(config, "channel", rule.action_type)
        recipient = self._require(config, "recipient", rule.action_type)
        message = render_message(
            config.get("message", "Automation '{event_type}' fired"), subject, event
        )
        await self._notify(channel, recipient, message)
        # Notifications change nothing on the subject
        return ActionOutcome(log=self._log(
            rule, subject, AutomationLogStatus.SUCCESS,
            f"notification sent to {recipient} via {channel}", now,
            {"channel": channel, "recipient": recipient},
        ))

    async def _create_task(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        now = event.timestamp
        config = rule.action_config
        title = render_message(
            config.get("title", "Follow up ticket #{ticket_number}"), ticket, event
        )
        due_in = config.get("due_in_minutes")
        if due_in is not None:
            if isinstance(due_in, bool) or not isinstance(due_in, (int, float)) or due_in < 0:
                raise ActionExecutionException(
                    rule.action_type, "action_config.due_in_minutes must be a non-negative number",
                    {"due_in_minutes": due_in},
                )
        task_request = TaskRequest(
            title=title,
            ticket_id=ticket.id,
            description=config.get("description"),
            priority=self._validate_priority(config.get("priority", ticket.priority), rule.action_type),
            assignee_id=config.get("assignee_id", ticket.assignee_id),
            due_date=now + timedelta(minutes=float(due_in)) if due_in is not None else None,
        )
        try:
            task_id = await asyncio.wait_for(
                self._task_creator.create_task(task_request), timeout=self._task_creator_timeout
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceException("TaskCreator", "timed out") from e

        return ActionOutcome(log=self._log(
            rule, ticket, AutomationLogStatus.SUCCESS, f"task {task_id} created", now,
            {"created_task_id": task_id},
        ))

    async def _escalate(self, rule, ticket: Ticket, event: Event) -> ActionOutcome:
        """
        Reassign and/or raise priority.

        action_config keys: assignee_id, priority, raise_priority (default
        True when neither assignee_id nor priority is given), notify
        ({channel, recipient, message}, best-effort).
        """
        now = event.timestamp
        config = rule.action_config
        assignee_id = config.get("assignee_id")
        target_priority = config.get("priority")
        raise_priority = config.get("raise_priority", assignee_id is None and target_priority is None)
        notify = config.get("notify")
        if notify is not None and not isinstance(notify, dict):
            raise ActionExecutionException(rule.action_type, "action_config.notify must be an object")

        if target_priority is None and raise_priority:
            rank = VALID_PRIORITIES.index(ticket.priority)
            target_priority = VALID_PRIORITIES[min(rank + 1, len(VALID_PRIORITIES) - 1)]
        if target_priority is not None:
            self._validate_priority(target_priority, rule.action_type)
        if assignee_id is not None:
            assignee_id = str(assignee_id)
            if assignee_id != ticket.assignee_id:
                await self._ensure_user(assignee_id, rule.action_type)

        history = []
        if assignee_id is not None and assignee_id != ticket.assignee_id:
            history.append(self._automation_history(
                ticket, rule, now, "assignee_id", ticket.assignee_id, assignee_id,
                HistoryAction.ASSIGNED,
            ))
            ticket.assignee_id = assignee_id
        if target_priority is not None and target_priority != ticket.priority:
            history.append(self._automation_history(
                ticket, rule, now, "priority", ticket.priority, target_priority
            ))
            ticket.priority = target_priority

        if not history:
            return self._skipped(rule, ticket, "nothing to escalate", now)
        ticket.updated_at = now

        metadata = {"assignee_id": ticket.assignee_id, "priority": ticket.priority}
        if notify:
            try:
                await self._notify(
                    notify.get("channel", ""),
                    notify.get("recipient", ""),
                    render_message(notify.get("message", "Ticket #{ticket_number} escalated"),
                                   ticket, event),
                )
                metadata["notified"] = True
            except ExternalServiceException as e:
                metadata["notified"] = False
                metadata["notify_error"] = e.message
            except ValueError as e:
                metadata["notified"] = False
                metadata["notify_error"] = str(e)

        return self._success(rule, ticket, "ticket escalated", now, history, metadata)

    # ---------- task actions ----------

    async def _execute_on_task(self, rule, task: Task, event: Event) -> ActionOutcome:
        now = event.timestamp
        if rule.action_type not in self.TASK_ACTIONS:
            raise ActionExecutionException(rule.action_type, "unsupported for task events")
        if rule.action_type == ActionType.SEND_NOTIFICATION:
            return await self._send_notification(rule, task, event)

        working = task.snapshot()
        if rule.action_type == ActionType.ASSIGN:
            assignee_id = str(self._require(rule.action_config, "assignee_id", rule.action_type))
            if working.assignee_id == assignee_id:
                return self._skipped(rule, task, f"already assigned to {assignee_id}", now)
            await self._ensure_user(assignee_id, rule.action_type)
            working.assignee_id = assignee_id
            return self._success(rule, working, f"task assigned to {assignee_id}", now)

        priority = self._validate_priority(
            self._require(rule.action_config, "priority", rule.action_type), rule.action_type
        )
        if working.priority == priority:
            return self._skipped(rule, task, f"priority already {priority}", now)
        working.priority = priority
        return self._success(rule, working, f"task priority changed to {priority}", now)


# ========== Engine ==========

class AutomationEngine:
    """
    Runs evaluator and executor for events and persists automation logs.

    Actions triggered by a rule do not produce new events here; the engine
    evaluates exactly the events it is given. Status and priority changes
    made by actions never re-enter evaluation, while SLA breaches they cause
    are handed back by the ticket workflow as sla_breach events.
    """

    def __init__(
        self,
        storage: IAutomationStorage,
        evaluator: RuleEvaluator,
        executor: ActionExecutor,
    ):
        self._storage = storage
        self._evaluator = evaluator
        self._executor = executor

    @property
    def evaluator(self) -> RuleEvaluator:
        return self._evaluator

    async def process_events(
        self,
        events: List[Event],
        ticket: Ticket,
        rules: Optional[List[AutomationRule]] = None,
    ) -> EngineResult:
        """
        Evaluate each event against active rules and execute every match.

        Matches run in rule creation order, each against the ticket state
        left by the previous action.
        """
        if rules is None:
            rules = await self._storage.load_active_rules()
        result = EngineResult(ticket=ticket)

        for event in events:
            for match in self._evaluator.evaluate(event, rules):
                await self._apply_match(match, event, result)
        return result

    async def process_task_event(
        self,
        event: Event,
        rules: Optional[List[AutomationRule]] = None,
    ) -> EngineResult:
        if rules is None:
            rules = await self._storage.load_active_rules()
        result = EngineResult(ticket=None, task=event.task)
        for match in self._evaluator.evaluate(event, rules):
            await self._apply_match(match, event, result)
        return result

    async def execute_scheduled(
        self,
        rule: AutomationRule,
        ticket: Ticket,
        now: datetime,
    ) -> Optional[EngineResult]:
        """Test and run one scheduled rule against one ticket; None when it does not match."""
        event = Event(type=TriggerType.SCHEDULED, timestamp=now, ticket=ticket.snapshot())
        match = self._evaluator.test(rule, event)
        if not match.matched and not match.is_error:
            return None
        result = EngineResult(ticket=ticket)
        await self._apply_match(match, event, result)
        return result

    async def record_failure(self, rule: AutomationRule, message: str, now: datetime,
                             metadata: Optional[dict] = None) -> AutomationLog:
        """Append a failed log that is not tied to a subject."""
        log = AutomationLog(
            rule_id=rule.id,
            status=AutomationLogStatus.FAILED,
            message=message,
            created_at=now,
            metadata={"trigger_type": rule.trigger_type, **(metadata or {})},
        )
        return await self._storage.append_automation_log(log)

    async def _apply_match(self, match: RuleMatch, event: Event, result: EngineResult) -> None:
        rule = match.rule
        is_task_event = event.type == TriggerType.TASK_DUE
        subject = result.task if is_task_event else result.ticket

        if match.is_error:
            logger.warning(
                "Automation rule skipped: malformed condition",
                extra={"rule_id": rule.id, "error": match.error},
            )
            log = AutomationLog(
                rule_id=rule.id,
                status=AutomationLogStatus.FAILED,
                message=match.error,
                created_at=event.timestamp,
                ticket_id=subject.ticket_id if is_task_event else subject.id,
                task_id=subject.id if is_task_event else None,
                metadata={"trigger_type": rule.trigger_type, "event_type": event.type},
            )
        elif match.matched:
            outcome = await self._executor.execute(rule, subject, event)
            if outcome.ticket is not None:
                result.ticket = outcome.ticket
            if outcome.task is not None:
                result.task = outcome.task
            result.history.extend(outcome.history)
            log = outcome.log
        else:
            return

        result.logs.append(await self._storage.append_automation_log(log))
