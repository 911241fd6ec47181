"""
Unit tests for the ticket status machine.

Tests:
- Transition events and history records
- first_response_at / resolved_at stamping
- Reopen resets the resolution clock once per cycle
- Restricted transitions
"""

from datetime import timedelta

import pytest

from config import HistoryAction, TicketStatus, TriggerType
from core import InvalidTransitionException
from sla.domain import TicketStatusMachine

from conftest import T0, make_ticket


@pytest.fixture
def machine() -> TicketStatusMachine:
    return TicketStatusMachine()


class TestTransition:

    def test_emits_status_changed_event(self, machine):
        ticket = make_ticket()
        now = T0 + timedelta(minutes=5)

        result = machine.transition(ticket, TicketStatus.IN_PROGRESS, now, actor_id="agent-1")

        assert result.event.type == TriggerType.STATUS_CHANGED
        assert result.event.previous_ticket.status == TicketStatus.OPEN
        assert result.event.ticket.status == TicketStatus.IN_PROGRESS
        assert ticket.updated_at == now
        assert [h.action for h in result.history] == [
            HistoryAction.STATUS_CHANGED, HistoryAction.FIRST_RESPONSE
        ]

    def test_event_snapshots_are_independent(self, machine):
        ticket = make_ticket()
        result = machine.transition(ticket, TicketStatus.PENDING, T0)
        ticket.tags.add("later")
        assert "later" not in result.event.ticket.tags

    def test_same_status_is_noop(self, machine):
        ticket = make_ticket()
        assert machine.transition(ticket, TicketStatus.OPEN, T0) is None

    def test_leaving_open_stamps_first_response(self, machine):
        ticket = make_ticket()
        now = T0 + timedelta(minutes=30)
        machine.transition(ticket, TicketStatus.WAITING, now)
        assert ticket.first_response_at == now

    def test_first_response_not_overwritten(self, machine):
        earlier = T0 + timedelta(minutes=1)
        ticket = make_ticket(first_response_at=earlier)
        machine.transition(ticket, TicketStatus.IN_PROGRESS, T0 + timedelta(hours=1))
        assert ticket.first_response_at == earlier

    def test_unknown_status_rejected(self, machine):
        with pytest.raises(InvalidTransitionException):
            machine.transition(make_ticket(), "archived", T0)


class TestResolution:

    def test_resolve_stamps_resolved_at(self, machine):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS)
        now = T0 + timedelta(hours=2)
        machine.transition(ticket, TicketStatus.RESOLVED, now)
        assert ticket.resolved_at == now

    def test_close_without_resolve_stamps_resolved_at(self, machine):
        ticket = make_ticket()
        now = T0 + timedelta(hours=2)
        machine.transition(ticket, TicketStatus.CLOSED, now)
        assert ticket.resolved_at == now

    def test_close_after_resolve_keeps_resolved_at(self, machine):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS)
        resolved = T0 + timedelta(hours=1)
        machine.transition(ticket, TicketStatus.RESOLVED, resolved)
        machine.transition(ticket, TicketStatus.CLOSED, resolved + timedelta(days=1))
        assert ticket.resolved_at == resolved

    def test_reopen_resets_resolution_clock(self, machine):
        ticket = make_ticket(status=TicketStatus.RESOLVED,
                             resolved_at=T0 + timedelta(hours=1), sla_resolution_met=True)
        due_before = ticket.sla_resolution_due

        machine.transition(ticket, TicketStatus.OPEN, T0 + timedelta(hours=3))

        assert ticket.resolved_at is None
        assert ticket.sla_resolution_met is None
        assert ticket.sla_resolution_due == due_before

    def test_resolve_reopen_resolve_cycle(self, machine):
        ticket = make_ticket(status=TicketStatus.IN_PROGRESS)
        first = T0 + timedelta(hours=1)
        second = T0 + timedelta(hours=5)

        machine.transition(ticket, TicketStatus.RESOLVED, first)
        machine.transition(ticket, TicketStatus.IN_PROGRESS, T0 + timedelta(hours=2))
        machine.transition(ticket, TicketStatus.RESOLVED, second)

        assert ticket.resolved_at == second

    def test_closed_to_resolved_keeps_resolution(self, machine):
        resolved = T0 + timedelta(hours=1)
        ticket = make_ticket(status=TicketStatus.CLOSED, resolved_at=resolved, sla_resolution_met=True)
        machine.transition(ticket, TicketStatus.RESOLVED, T0 + timedelta(hours=2))
        assert ticket.resolved_at == resolved
        assert ticket.sla_resolution_met is True


class TestRestrictedTransitions:

    def test_forbidden_move_raises(self):
        machine = TicketStatusMachine({TicketStatus.CLOSED: [TicketStatus.OPEN]})
        ticket = make_ticket(status=TicketStatus.CLOSED)

        with pytest.raises(InvalidTransitionException) as exc_info:
            machine.transition(ticket, TicketStatus.OPEN, T0)

        assert exc_info.value.details == {"current_status": "closed", "attempted_status": "open"}
        assert ticket.status == TicketStatus.CLOSED

    def test_other_moves_still_allowed(self):
        machine = TicketStatusMachine({TicketStatus.CLOSED: [TicketStatus.OPEN]})
        ticket = make_ticket(status=TicketStatus.CLOSED)
        assert machine.transition(ticket, TicketStatus.IN_PROGRESS, T0) is not None


class TestMarkFirstResponse:

    def test_stamps_once(self):
        ticket = make_ticket()
        first = T0 + timedelta(minutes=10)

        record = TicketStatusMachine.mark_first_response(ticket, first, "agent-1")
        again = TicketStatusMachine.mark_first_response(ticket, first + timedelta(minutes=5))

        assert record.action == HistoryAction.FIRST_RESPONSE
        assert record.user_id == "agent-1"
        assert again is None
        assert ticket.first_response_at == first
