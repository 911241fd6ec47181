"""
Automation Domain Entities
===========================

Rules, their evaluation outcome and the append-only execution log.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from config import TriggerType


@dataclass
class AutomationRule:
    """
    Trigger-condition-action tuple.

    ``trigger_conditions`` keeps the stored (JSON) form; the evaluator parses
    it into Condition objects on every evaluation. ``created_at`` defines the
    stable order in which matching rules are returned.
    """

    id: str
    name: str
    trigger_type: str
    action_type: str
    created_at: datetime
    is_active: bool = True
    description: Optional[str] = None
    trigger_conditions: Any = None
    action_config: Dict[str, Any] = field(default_factory=dict)
    schedule_cron: Optional[str] = None
    last_run_at: Optional[datetime] = None

    @property
    def is_scheduled(self) -> bool:
        return self.trigger_type == TriggerType.SCHEDULED

    @property
    def sort_key(self):
        return (self.created_at, self.id)


@dataclass(frozen=True)
class AutomationLog:
    """Outcome of one rule execution. Never mutated after creation."""

    rule_id: str
    status: str
    message: str
    created_at: datetime
    ticket_id: Optional[str] = None
    task_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass(frozen=True)
class RuleMatch:
    """Evaluation outcome of a single rule against an event."""

    rule: AutomationRule
    matched: bool
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
