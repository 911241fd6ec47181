"""
Unit tests for the automation engine (evaluator + executor + log storage).
"""

from datetime import timedelta

import pytest

from config import (
    ActionType, AutomationLogStatus, Priority, SLAType, TicketStatus, TriggerType,
)
from sla.domain import Event

from conftest import T0, make_rule, make_ticket

NOW = T0 + timedelta(hours=5)


def breach_event(ticket, sla_type=SLAType.RESPONSE) -> Event:
    return Event(type=TriggerType.SLA_BREACH, timestamp=NOW, ticket=ticket.snapshot(),
                 sla_type=sla_type)


class TestSlaBreachRules:

    @pytest.mark.asyncio
    async def test_fires_only_for_matching_priority(self, engine, storage):
        """{priority: critical} on sla_breach: one log for the critical ticket only."""
        rule = make_rule(TriggerType.SLA_BREACH, ActionType.ADD_TAG, {"priority": "critical"},
                         {"tag": "breached"})
        storage.rules.append(rule)
        critical = make_ticket(priority=Priority.CRITICAL)
        low = make_ticket(priority=Priority.LOW)

        critical_result = await engine.process_events([breach_event(critical)], critical)
        low_result = await engine.process_events([breach_event(low)], low)

        assert [log.ticket_id for log in storage.logs] == [critical.id]
        assert critical_result.ticket.tags == {"breached"}
        assert low_result.logs == []
        assert low_result.changed is False

    @pytest.mark.asyncio
    async def test_filter_on_sla_type(self, engine, storage):
        storage.rules.append(make_rule(TriggerType.SLA_BREACH, ActionType.ESCALATE,
                                       {"sla_type": "resolution"}))
        ticket = make_ticket(priority=Priority.LOW)

        result = await engine.process_events(
            [breach_event(ticket, SLAType.RESPONSE), breach_event(ticket, SLAType.RESOLUTION)], ticket
        )

        assert len(result.logs) == 1
        assert result.ticket.priority == Priority.MEDIUM


class TestProcessEvents:

    @pytest.mark.asyncio
    async def test_add_tag_twice_skips_second(self, engine, storage):
        storage.rules.extend([
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "new"}),
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "new"}),
        ])
        ticket = make_ticket()
        event = Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=ticket.snapshot())

        result = await engine.process_events([event], ticket)

        assert result.ticket.tags == {"new"}
        assert [log.status for log in result.logs] == [
            AutomationLogStatus.SUCCESS, AutomationLogStatus.SKIPPED
        ]
        assert all(log.id for log in result.logs)

    @pytest.mark.asyncio
    async def test_actions_apply_in_order_on_accumulated_state(self, engine, storage):
        storage.rules.extend([
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "a"}),
            make_rule(TriggerType.TICKET_CREATED, ActionType.CHANGE_PRIORITY,
                      action_config={"priority": "high"}),
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "b"}),
        ])
        ticket = make_ticket()
        event = Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=ticket.snapshot())

        result = await engine.process_events([event], ticket)

        assert result.ticket.tags == {"a", "b"}
        assert result.ticket.priority == Priority.HIGH
        assert len(result.history) == 3

    @pytest.mark.asyncio
    async def test_malformed_rule_logged_and_others_run(self, engine, storage):
        storage.rules.extend([
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, {"nonsense": 1},
                      {"tag": "never"}),
            make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "ok"}),
        ])
        ticket = make_ticket()
        event = Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=ticket.snapshot())

        result = await engine.process_events([event], ticket)

        assert [log.status for log in result.logs] == [
            AutomationLogStatus.FAILED, AutomationLogStatus.SUCCESS
        ]
        assert result.ticket.tags == {"ok"}

    @pytest.mark.asyncio
    async def test_action_changes_do_not_cascade(self, engine, storage):
        storage.rules.extend([
            make_rule(TriggerType.TICKET_CREATED, ActionType.CHANGE_STATUS,
                      action_config={"status": "in_progress"}),
            make_rule(TriggerType.STATUS_CHANGED, ActionType.ADD_TAG, action_config={"tag": "moved"}),
        ])
        ticket = make_ticket()
        event = Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=ticket.snapshot())

        result = await engine.process_events([event], ticket)

        assert result.ticket.status == TicketStatus.IN_PROGRESS
        assert "moved" not in result.ticket.tags
        assert len(storage.logs) == 1

    @pytest.mark.asyncio
    async def test_explicit_rule_list(self, engine, storage):
        rule = make_rule(TriggerType.TICKET_CREATED, ActionType.ADD_TAG, action_config={"tag": "x"})
        ticket = make_ticket()
        event = Event(type=TriggerType.TICKET_CREATED, timestamp=T0, ticket=ticket.snapshot())

        result = await engine.process_events([event], ticket, rules=[rule])

        assert result.ticket.tags == {"x"}


class TestScheduled:

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self, engine):
        rule = make_rule(TriggerType.SCHEDULED, ActionType.ADD_TAG, {"status": "pending"},
                         {"tag": "stale"}, schedule_cron="0 * * * *")
        assert await engine.execute_scheduled(rule, make_ticket(), NOW) is None

    @pytest.mark.asyncio
    async def test_match_executes(self, engine, storage):
        rule = make_rule(TriggerType.SCHEDULED, ActionType.ADD_TAG, {"status": "open"},
                         {"tag": "stale"}, schedule_cron="0 * * * *")

        result = await engine.execute_scheduled(rule, make_ticket(), NOW)

        assert result.ticket.tags == {"stale"}
        assert storage.logs[0].metadata["trigger_type"] == TriggerType.SCHEDULED

    @pytest.mark.asyncio
    async def test_record_failure(self, engine, storage):
        rule = make_rule(TriggerType.SCHEDULED, ActionType.ADD_TAG, schedule_cron="bad")
        log = await engine.record_failure(rule, "invalid cron", NOW)

        assert log.status == AutomationLogStatus.FAILED
        assert log.ticket_id is None
        assert storage.logs == [log]
