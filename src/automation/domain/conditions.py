"""
Rule condition interpreter.

Stored conditions are JSON-like; they are parsed into (field, operator,
value) variants and evaluated here. Conditions are ANDed, there is no OR
grouping.

Accepted stored forms::

    {"priority": "critical"}                                  # equals
    {"priority": {"operator": "in", "value": ["high", "critical"]}}
    {"status": {"changed_from": "open", "changed_to": "resolved"}}
    [{"field": "tags", "operator": "contains", "value": "vip"}]
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from config import VALID_PRIORITIES
from core import MalformedRuleConditionException
from sla.domain.entities import Event


class Operator(str):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    CHANGED = "changed"
    CHANGED_FROM = "changed_from"
    CHANGED_TO = "changed_to"


VALID_OPERATORS = [
    Operator.EQUALS, Operator.NOT_EQUALS, Operator.GREATER_THAN,
    Operator.LESS_THAN, Operator.IN, Operator.NOT_IN, Operator.CONTAINS,
    Operator.CHANGED, Operator.CHANGED_FROM, Operator.CHANGED_TO,
]
CHANGE_OPERATORS = (Operator.CHANGED, Operator.CHANGED_FROM, Operator.CHANGED_TO)

TICKET_FIELDS = frozenset({
    "status", "priority", "subject", "organization_id", "assignee_id",
    "created_by_id", "sla_profile_id", "ticket_number", "tags",
    "sla_response_met", "sla_resolution_met", "sla_response_due",
    "sla_resolution_due", "first_response_at", "resolved_at", "created_at",
})
TASK_FIELDS = frozenset({
    "title", "priority", "assignee_id", "ticket_id", "due_date", "completed_at",
})
# Fields read from the event rather than the subject entity
EVENT_FIELDS = frozenset({"sla_type"})

_DATETIME_FIELDS = frozenset({
    "sla_response_due", "sla_resolution_due", "first_response_at",
    "resolved_at", "created_at", "due_date", "completed_at",
})


@dataclass(frozen=True)
class Condition:
    """One parsed predicate."""

    field: str
    operator: str
    value: Any = None


def parse_conditions(raw: Any, rule_id: Optional[str] = None,
                     task_subject: bool = False) -> List[Condition]:
    """
    Parse stored conditions into Condition objects.

    Raises:
        MalformedRuleConditionException: unknown field, unknown operator or
            an unsupported structure
    """
    if raw is None or raw == {} or raw == []:
        return []

    allowed_fields = (TASK_FIELDS if task_subject else TICKET_FIELDS) | EVENT_FIELDS
    conditions: List[Condition] = []

    if isinstance(raw, dict):
        for field_name, criteria in raw.items():
            conditions.extend(_parse_field(field_name, criteria, rule_id))
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict) or "field" not in item:
                raise MalformedRuleConditionException(rule_id, f"invalid condition entry {item!r}")
            conditions.append(Condition(
                field=item["field"],
                operator=item.get("operator", Operator.EQUALS),
                value=item.get("value"),
            ))
    else:
        raise MalformedRuleConditionException(rule_id, f"unsupported conditions type {type(raw).__name__}")

    for condition in conditions:
        if condition.field not in allowed_fields:
            raise MalformedRuleConditionException(rule_id, f"unknown field '{condition.field}'")
        if condition.operator not in VALID_OPERATORS:
            raise MalformedRuleConditionException(rule_id, f"unknown operator '{condition.operator}'")
        if condition.operator in (Operator.IN, Operator.NOT_IN) and not isinstance(condition.value, list):
            raise MalformedRuleConditionException(
                rule_id, f"operator '{condition.operator}' on '{condition.field}' needs a list"
            )
    return conditions


def _parse_field(field_name: str, criteria: Any, rule_id: Optional[str]) -> List[Condition]:
    if not isinstance(criteria, dict):
        return [Condition(field_name, Operator.EQUALS, criteria)]
    if "operator" in criteria:
        return [Condition(field_name, criteria["operator"], criteria.get("value"))]
    if not criteria:
        raise MalformedRuleConditionException(rule_id, f"empty condition for '{field_name}'")
    return [Condition(field_name, operator, value) for operator, value in criteria.items()]


class ConditionInterpreter:
    """Evaluates parsed conditions against an event."""

    def matches(self, conditions: List[Condition], event: Event,
                rule_id: Optional[str] = None) -> bool:
        return all(self._holds(condition, event, rule_id) for condition in conditions)

    def _holds(self, condition: Condition, event: Event, rule_id: Optional[str]) -> bool:
        if condition.field in EVENT_FIELDS:
            current = getattr(event, condition.field, None)
            previous = None
        else:
            current = _read(event.subject, condition.field)
            previous = _read(event.previous_subject, condition.field)

        op = condition.operator
        if op in CHANGE_OPERATORS:
            if event.previous_subject is None or condition.field in EVENT_FIELDS:
                return False
            if current == previous:
                return False
            if op == Operator.CHANGED:
                return condition.value in (None, True)
            if op == Operator.CHANGED_FROM:
                return previous == condition.value
            return current == condition.value

        try:
            if op == Operator.EQUALS:
                return current == condition.value
            if op == Operator.NOT_EQUALS:
                return current != condition.value
            if op == Operator.IN:
                return current in condition.value
            if op == Operator.NOT_IN:
                return current not in condition.value
            if op == Operator.CONTAINS:
                return current is not None and condition.value in current
            if current is None:
                return False
            left, right = _ordinal(condition.field, current), _ordinal(condition.field, condition.value)
            if op == Operator.GREATER_THAN:
                return left > right
            return left < right
        except (TypeError, ValueError) as e:
            raise MalformedRuleConditionException(
                rule_id, f"cannot apply '{op}' to '{condition.field}': {e}"
            ) from e


def _read(subject: Any, field_name: str) -> Any:
    if subject is None:
        return None
    return getattr(subject, field_name, None)


def _ordinal(field_name: str, value: Any) -> Any:
    """Comparable form: priority rank, parsed datetime, or the value itself."""
    if field_name == "priority":
        return VALID_PRIORITIES.index(value)
    if field_name in _DATETIME_FIELDS and isinstance(value, str):
        return datetime.fromisoformat(value)
    return value
