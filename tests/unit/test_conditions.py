"""
Unit tests for rule condition parsing and interpretation.
"""

from datetime import timedelta

import pytest

from automation.domain import Condition, ConditionInterpreter, Operator, parse_conditions
from config import Priority, SLAType, TicketStatus, TriggerType
from core import MalformedRuleConditionException
from sla.domain import Event, Task

from conftest import T0, make_ticket


@pytest.fixture
def interpreter() -> ConditionInterpreter:
    return ConditionInterpreter()


def matches(interpreter, raw, event, task_subject=False) -> bool:
    return interpreter.matches(parse_conditions(raw, "rule-x", task_subject), event, "rule-x")


def created(**kwargs) -> Event:
    return Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=make_ticket(**kwargs))


def status_change(old: str, new: str) -> Event:
    previous = make_ticket(status=old)
    current = make_ticket(id=previous.id, status=new)
    return Event(type=TriggerType.STATUS_CHANGED, timestamp=T0, ticket=current,
                 previous_ticket=previous)


class TestParseConditions:
    """Tests for parse_conditions()."""

    def test_empty_means_always(self):
        assert parse_conditions(None) == []
        assert parse_conditions({}) == []

    def test_shorthand_equals(self):
        assert parse_conditions({"priority": "critical"}) == [
            Condition("priority", Operator.EQUALS, "critical")
        ]

    def test_operator_form(self):
        assert parse_conditions({"priority": {"operator": "in", "value": ["high", "critical"]}}) == [
            Condition("priority", Operator.IN, ["high", "critical"])
        ]

    def test_change_form_expands(self):
        parsed = parse_conditions({"status": {"changed_from": "open", "changed_to": "resolved"}})
        assert parsed == [
            Condition("status", Operator.CHANGED_FROM, "open"),
            Condition("status", Operator.CHANGED_TO, "resolved"),
        ]

    def test_list_form(self):
        parsed = parse_conditions([{"field": "tags", "operator": "contains", "value": "vip"}])
        assert parsed == [Condition("tags", Operator.CONTAINS, "vip")]

    def test_unknown_field(self):
        with pytest.raises(MalformedRuleConditionException) as exc_info:
            parse_conditions({"mood": "angry"}, "rule-1")
        assert exc_info.value.rule_id == "rule-1"

    def test_unknown_operator(self):
        with pytest.raises(MalformedRuleConditionException):
            parse_conditions({"priority": {"operator": "roughly", "value": "high"}})

    def test_in_requires_list(self):
        with pytest.raises(MalformedRuleConditionException):
            parse_conditions({"priority": {"operator": "in", "value": "high"}})

    def test_unsupported_structure(self):
        with pytest.raises(MalformedRuleConditionException):
            parse_conditions("priority == high")

    def test_task_fields_only_for_task_events(self):
        assert parse_conditions({"title": "Call back"}, task_subject=True)
        with pytest.raises(MalformedRuleConditionException):
            parse_conditions({"title": "Call back"})


class TestInterpreter:
    """Tests for ConditionInterpreter.matches()."""

    def test_equals(self, interpreter):
        assert matches(interpreter, {"priority": "critical"}, created(priority=Priority.CRITICAL))
        assert not matches(interpreter, {"priority": "critical"}, created(priority=Priority.HIGH))

    def test_conditions_are_anded(self, interpreter):
        raw = {"priority": "high", "status": "pending"}
        assert not matches(interpreter, raw, created(priority=Priority.HIGH))
        assert matches(interpreter, raw, created(priority=Priority.HIGH, status=TicketStatus.PENDING))

    def test_in_and_not_in(self, interpreter):
        event = created(priority=Priority.HIGH)
        assert matches(interpreter, {"priority": {"operator": "in", "value": ["high", "critical"]}}, event)
        assert not matches(interpreter, {"priority": {"operator": "not_in", "value": ["high"]}}, event)

    def test_priority_comparison_is_ordinal(self, interpreter):
        raw = {"priority": {"operator": "greater_than", "value": "medium"}}
        assert matches(interpreter, raw, created(priority=Priority.HIGH))
        assert not matches(interpreter, raw, created(priority=Priority.LOW))

    def test_less_than_on_missing_value_is_false(self, interpreter):
        raw = {"first_response_at": {"operator": "less_than", "value": T0.isoformat()}}
        assert not matches(interpreter, raw, created())

    def test_datetime_comparison(self, interpreter):
        raw = {"sla_response_due": {"operator": "less_than", "value": (T0 + timedelta(hours=1)).isoformat()}}
        assert matches(interpreter, raw, created(sla_response_due=T0 + timedelta(minutes=30)))

    def test_contains_tag(self, interpreter):
        raw = {"tags": {"operator": "contains", "value": "vip"}}
        assert matches(interpreter, raw, created(tags={"vip", "billing"}))
        assert not matches(interpreter, raw, created())

    def test_not_equals_none(self, interpreter):
        raw = {"assignee_id": {"operator": "not_equals", "value": None}}
        assert not matches(interpreter, raw, created())
        assert matches(interpreter, raw, created(assignee_id="agent-1"))

    def test_changed_from_to(self, interpreter):
        raw = {"status": {"changed_from": "open", "changed_to": "resolved"}}
        assert matches(interpreter, raw, status_change(TicketStatus.OPEN, TicketStatus.RESOLVED))
        assert not matches(interpreter, raw, status_change(TicketStatus.PENDING, TicketStatus.RESOLVED))

    def test_changed(self, interpreter):
        raw = {"status": {"operator": "changed"}}
        assert matches(interpreter, raw, status_change(TicketStatus.OPEN, TicketStatus.PENDING))

    def test_change_operators_need_previous_state(self, interpreter):
        assert not matches(interpreter, {"status": {"operator": "changed"}}, created())

    def test_sla_type_read_from_event(self, interpreter):
        event = Event(type=TriggerType.SLA_BREACH, timestamp=T0, ticket=make_ticket(),
                      sla_type=SLAType.RESOLUTION)
        assert matches(interpreter, {"sla_type": "resolution"}, event)
        assert not matches(interpreter, {"sla_type": "response"}, event)

    def test_task_subject(self, interpreter):
        task = Task(id="task-1", title="Call back", priority=Priority.HIGH, due_date=T0)
        event = Event(type=TriggerType.TASK_DUE, timestamp=T0, task=task)
        assert matches(interpreter, {"priority": "high"}, event, task_subject=True)

    def test_incomparable_values_are_malformed(self, interpreter):
        raw = {"priority": {"operator": "greater_than", "value": "urgent"}}
        with pytest.raises(MalformedRuleConditionException):
            matches(interpreter, raw, created(priority=Priority.HIGH))
