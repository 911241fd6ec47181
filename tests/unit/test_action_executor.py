"""
Unit tests for automation actions.

Tests:
- Each action type: success, skipped no-op and failure
- Working-copy semantics (no partial application)
- Notifier / task creator failures and timeouts
- Task-event actions
"""

from datetime import timedelta

import pytest

from config import (
    ActionType, AutomationLogStatus, HistoryAction, Priority, TicketStatus, TriggerType,
)
from sla.domain import Event, Task, TicketStatusMachine
from automation.application import ActionExecutor, render_message

from conftest import AGENT_ID, LEAD_ID, T0, make_rule, make_ticket

NOW = T0 + timedelta(minutes=15)


def event_for(ticket, trigger=TriggerType.TICKET_UPDATED) -> Event:
    return Event(type=trigger, timestamp=NOW, ticket=ticket.snapshot())


def rule(action_type, **config):
    return make_rule(TriggerType.TICKET_UPDATED, action_type, action_config=config)


class TestAssign:

    @pytest.mark.asyncio
    async def test_assigns_existing_user(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.ASSIGN, assignee_id=AGENT_ID),
                                         ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.SUCCESS
        assert outcome.ticket.assignee_id == AGENT_ID
        assert outcome.history[0].action == HistoryAction.ASSIGNED
        assert outcome.history[0].metadata["rule_id"].startswith("rule-")
        assert ticket.assignee_id is None

    @pytest.mark.asyncio
    async def test_unknown_user_fails(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.ASSIGN, assignee_id="ghost"),
                                         ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "ghost" in outcome.log.message
        assert outcome.ticket is None

    @pytest.mark.asyncio
    async def test_already_assigned_skipped(self, executor):
        ticket = make_ticket(assignee_id=AGENT_ID)
        outcome = await executor.execute(rule(ActionType.ASSIGN, assignee_id=AGENT_ID),
                                         ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_missing_config_fails(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.ASSIGN), ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "assignee_id" in outcome.log.message

    @pytest.mark.asyncio
    async def test_automatic_assignment_is_not_first_response(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.ASSIGN, assignee_id=AGENT_ID),
                                         ticket, event_for(ticket))
        assert outcome.ticket.first_response_at is None


class TestChangeStatus:

    @pytest.mark.asyncio
    async def test_goes_through_status_machine(self, executor):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS)
        outcome = await executor.execute(rule(ActionType.CHANGE_STATUS, status="resolved"),
                                         ticket, event_for(ticket))

        assert outcome.ticket.status == TicketStatus.RESOLVED
        assert outcome.ticket.resolved_at == NOW
        assert outcome.history[0].action == HistoryAction.STATUS_CHANGED
        assert "rule_id" in outcome.history[0].metadata

    @pytest.mark.asyncio
    async def test_same_status_skipped(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.CHANGE_STATUS, status="open"),
                                         ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_forbidden_transition_fails(self, storage, notifier, task_creator):
        executor = ActionExecutor(
            TicketStatusMachine({TicketStatus.CLOSED: [TicketStatus.OPEN]}),
            storage, notifier, task_creator,
        )
        ticket = make_ticket(status=TicketStatus.CLOSED)
        outcome = await executor.execute(rule(ActionType.CHANGE_STATUS, status="open"),
                                         ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert ticket.status == TicketStatus.CLOSED


class TestChangePriority:

    @pytest.mark.asyncio
    async def test_changes_priority(self, executor):
        ticket = make_ticket(priority=Priority.LOW)
        outcome = await executor.execute(rule(ActionType.CHANGE_PRIORITY, priority="high"),
                                         ticket, event_for(ticket))

        assert outcome.ticket.priority == Priority.HIGH
        assert (outcome.history[0].old_value, outcome.history[0].new_value) == ("low", "high")

    @pytest.mark.asyncio
    async def test_unknown_priority_fails(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.CHANGE_PRIORITY, priority="urgent"),
                                         ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.FAILED

    @pytest.mark.asyncio
    async def test_does_not_recompute_deadlines(self, executor):
        due = T0 + timedelta(hours=4)
        ticket = make_ticket(priority=Priority.LOW, sla_response_due=due)
        outcome = await executor.execute(rule(ActionType.CHANGE_PRIORITY, priority="critical"),
                                         ticket, event_for(ticket))
        assert outcome.ticket.sla_response_due == due


class TestAddTag:

    @pytest.mark.asyncio
    async def test_adds_tag(self, executor):
        ticket = make_ticket()
        outcome = await executor.execute(rule(ActionType.ADD_TAG, tag="vip"), ticket, event_for(ticket))
        assert outcome.ticket.tags == {"vip"}
        assert ticket.tags == set()

    @pytest.mark.asyncio
    async def test_present_tag_skipped(self, executor):
        ticket = make_ticket(tags={"vip"})
        outcome = await executor.execute(rule(ActionType.ADD_TAG, tag="vip"), ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.SKIPPED
        assert outcome.ticket is None


class TestSendNotification:

    @pytest.mark.asyncio
    async def test_renders_and_sends(self, executor, notifier):
        ticket = make_ticket(ticket_number=42, priority=Priority.HIGH)
        action = rule(ActionType.SEND_NOTIFICATION, channel="email", recipient="lead@example.com",
                      message="Ticket #{ticket_number} is {priority} ({event_type})")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.SUCCESS
        assert outcome.ticket is None
        assert notifier.sent == [{
            "channel": "email",
            "recipient": "lead@example.com",
            "message": "Ticket #42 is high (ticket_updated)",
        }]

    @pytest.mark.asyncio
    async def test_delivery_failure_is_failed_log(self, executor, notifier):
        notifier.fail = True
        ticket = make_ticket()
        action = rule(ActionType.SEND_NOTIFICATION, channel="email", recipient="lead@example.com")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "Notifier" in outcome.log.message

    @pytest.mark.asyncio
    async def test_timeout_is_failed_log(self, executor, notifier):
        notifier.hang = True
        ticket = make_ticket()
        action = rule(ActionType.SEND_NOTIFICATION, channel="email", recipient="lead@example.com")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "timed out" in outcome.log.message

    def test_unknown_placeholder_left_untouched(self):
        assert render_message("{subject} {nope}", make_ticket(subject="Hi")) == "Hi {nope}"

    @pytest.mark.asyncio
    async def test_positional_placeholder_is_failed_log(self, executor, notifier):
        ticket = make_ticket()
        action = rule(ActionType.SEND_NOTIFICATION, channel="email", recipient="lead@example.com",
                      message="Ticket {0} needs attention")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "invalid action_config" in outcome.log.message
        assert outcome.log.metadata["error_type"] == "ValueError"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_non_string_message_is_failed_log(self, executor, notifier):
        ticket = make_ticket()
        action = rule(ActionType.SEND_NOTIFICATION, channel="email", recipient="lead@example.com",
                      message=["not", "a", "template"])

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert notifier.sent == []


class TestCreateTask:

    @pytest.mark.asyncio
    async def test_creates_linked_task(self, executor, task_creator):
        ticket = make_ticket(ticket_number=7, assignee_id=AGENT_ID)
        action = rule(ActionType.CREATE_TASK, due_in_minutes=60, description="Call the customer")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        [task_request] = task_creator.task_requests
        assert task_request.title == "Follow up ticket #7"
        assert task_request.ticket_id == ticket.id
        assert task_request.assignee_id == AGENT_ID
        assert task_request.due_date == NOW + timedelta(minutes=60)
        assert outcome.log.metadata["created_task_id"] == "task-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("due", ["soon", -5, True])
    async def test_invalid_due_in_minutes_fails(self, executor, task_creator, due):
        ticket = make_ticket()
        action = rule(ActionType.CREATE_TASK, due_in_minutes=due)

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "due_in_minutes" in outcome.log.message
        assert task_creator.task_requests == []


class TestEscalate:

    @pytest.mark.asyncio
    async def test_raises_priority_one_level(self, executor):
        ticket = make_ticket(priority=Priority.MEDIUM)
        outcome = await executor.execute(rule(ActionType.ESCALATE), ticket, event_for(ticket))
        assert outcome.ticket.priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_capped_at_critical(self, executor):
        ticket = make_ticket(priority=Priority.CRITICAL)
        outcome = await executor.execute(rule(ActionType.ESCALATE), ticket, event_for(ticket))
        assert outcome.log.status == AutomationLogStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_reassigns_and_raises(self, executor):
        ticket = make_ticket(priority=Priority.LOW, assignee_id=AGENT_ID)
        action = rule(ActionType.ESCALATE, assignee_id=LEAD_ID, raise_priority=True)

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.ticket.assignee_id == LEAD_ID
        assert outcome.ticket.priority == Priority.MEDIUM
        assert len(outcome.history) == 2

    @pytest.mark.asyncio
    async def test_unknown_assignee_leaves_ticket_untouched(self, executor):
        ticket = make_ticket(priority=Priority.LOW)
        action = rule(ActionType.ESCALATE, assignee_id="ghost", raise_priority=True)

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert outcome.ticket is None
        assert ticket.priority == Priority.LOW

    @pytest.mark.asyncio
    async def test_notification_is_best_effort(self, executor, notifier):
        notifier.fail = True
        ticket = make_ticket(priority=Priority.HIGH)
        action = rule(ActionType.ESCALATE,
                      notify={"channel": "email", "recipient": "lead@example.com"})

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.SUCCESS
        assert outcome.ticket.priority == Priority.CRITICAL
        assert outcome.log.metadata["notified"] is False

    @pytest.mark.asyncio
    async def test_malformed_notify_leaves_ticket_untouched(self, executor, notifier):
        ticket = make_ticket(priority=Priority.LOW)
        action = rule(ActionType.ESCALATE, notify="lead@example.com")

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert outcome.ticket is None
        assert ticket.priority == Priority.LOW
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unrenderable_notify_message_is_best_effort(self, executor, notifier):
        ticket = make_ticket(priority=Priority.LOW)
        action = rule(ActionType.ESCALATE,
                      notify={"channel": "email", "recipient": "lead@example.com",
                              "message": "Escalated {0}"})

        outcome = await executor.execute(action, ticket, event_for(ticket))

        assert outcome.log.status == AutomationLogStatus.SUCCESS
        assert outcome.ticket.priority == Priority.MEDIUM
        assert outcome.log.metadata["notified"] is False
        assert notifier.sent == []


class TestTaskEvents:

    @pytest.fixture
    def task(self):
        return Task(id="task-9", title="Call back", ticket_id="ticket-1",
                    priority=Priority.LOW, due_date=T0)

    def task_event(self, task):
        return Event(type=TriggerType.TASK_DUE, timestamp=NOW, task=task.snapshot())

    @pytest.mark.asyncio
    async def test_change_priority(self, executor, task):
        action = make_rule(TriggerType.TASK_DUE, ActionType.CHANGE_PRIORITY,
                           action_config={"priority": "high"})
        outcome = await executor.execute(action, task, self.task_event(task))

        assert outcome.task.priority == Priority.HIGH
        assert outcome.log.task_id == "task-9"
        assert outcome.log.ticket_id == "ticket-1"
        assert task.priority == Priority.LOW

    @pytest.mark.asyncio
    async def test_notification_renders_task_fields(self, executor, notifier, task):
        action = make_rule(TriggerType.TASK_DUE, ActionType.SEND_NOTIFICATION, action_config={
            "channel": "chat", "recipient": AGENT_ID, "message": "Task '{title}' is overdue",
        })
        await executor.execute(action, task, self.task_event(task))
        assert notifier.sent[0]["message"] == "Task 'Call back' is overdue"

    @pytest.mark.asyncio
    async def test_unsupported_action(self, executor, task):
        action = make_rule(TriggerType.TASK_DUE, ActionType.ADD_TAG, action_config={"tag": "x"})
        outcome = await executor.execute(action, task, self.task_event(task))

        assert outcome.log.status == AutomationLogStatus.FAILED
        assert "unsupported for task events" in outcome.log.message
