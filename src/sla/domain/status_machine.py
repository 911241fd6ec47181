"""
Ticket Status Machine
======================

Validates status transitions and stamps the timestamps the SLA calculator
consumes (first_response_at, resolved_at).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from config import (
    TicketStatus, TriggerType, HistoryAction,
    VALID_STATUSES, ACTIVE_STATUSES
)
from core import InvalidTransitionException
from sla.domain.entities import Event, Ticket, TicketHistoryRecord

_RESOLVED_STATES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)


@dataclass
class TransitionResult:
    """Event and audit records produced by one status change."""

    event: Event
    history: List[TicketHistoryRecord] = field(default_factory=list)


class TicketStatusMachine:
    """
    Applies status changes to a ticket.

    Every status may move to every other by default. A deployment that needs
    to forbid a move (e.g. closed -> open without an explicit reopen) passes
    ``restricted_transitions``: a mapping of current status to the statuses
    it may not move to.
    """

    def __init__(self, restricted_transitions: Optional[Dict[str, Iterable[str]]] = None):
        self._restricted = {
            status: frozenset(targets)
            for status, targets in (restricted_transitions or {}).items()
        }

    def validate_transition(self, current_status: str, new_status: str) -> None:
        if new_status not in VALID_STATUSES:
            raise InvalidTransitionException(current_status, new_status)
        if new_status in self._restricted.get(current_status, frozenset()):
            raise InvalidTransitionException(current_status, new_status)

    def transition(
        self,
        ticket: Ticket,
        new_status: str,
        now: datetime,
        actor_id: Optional[str] = None,
    ) -> Optional[TransitionResult]:
        """
        Move ticket to new_status.

        Returns None when the status is unchanged. Does not persist anything.
        """
        self.validate_transition(ticket.status, new_status)
        if new_status == ticket.status:
            return None

        previous = ticket.snapshot()
        old_status = ticket.status
        history = [
            TicketHistoryRecord(
                ticket_id=ticket.id,
                action=HistoryAction.STATUS_CHANGED,
                created_at=now,
                user_id=actor_id,
                field_name="status",
                old_value=old_status,
                new_value=new_status,
            )
        ]

        ticket.status = new_status
        ticket.updated_at = now

        # Reopening restarts the resolution clock; the due instant stays
        if old_status in _RESOLVED_STATES and new_status in ACTIVE_STATUSES:
            ticket.resolved_at = None
            ticket.sla_resolution_met = None

        if new_status in _RESOLVED_STATES and ticket.resolved_at is None:
            ticket.resolved_at = now

        if old_status == TicketStatus.OPEN:
            record = self.mark_first_response(ticket, now, actor_id)
            if record:
                history.append(record)

        event = Event(
            type=TriggerType.STATUS_CHANGED,
            timestamp=now,
            ticket=ticket.snapshot(),
            previous_ticket=previous,
        )
        return TransitionResult(event=event, history=history)

    @staticmethod
    def mark_first_response(
        ticket: Ticket,
        now: datetime,
        actor_id: Optional[str] = None,
    ) -> Optional[TicketHistoryRecord]:
        """Stamp first_response_at once; later calls are no-ops returning None."""
        if ticket.first_response_at is not None:
            return None
        ticket.first_response_at = now
        ticket.updated_at = max(ticket.updated_at, now)
        return TicketHistoryRecord(
            ticket_id=ticket.id,
            action=HistoryAction.FIRST_RESPONSE,
            created_at=now,
            user_id=actor_id,
            field_name="first_response_at",
            new_value=now.isoformat(),
        )
