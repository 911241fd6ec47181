"""
Automation Domain Layer
=======================

Contains:
- Entities: AutomationRule, AutomationLog, RuleMatch
- Condition parsing and interpretation
- Cron window arithmetic for scheduled rules
"""

from automation.domain.entities import AutomationRule, AutomationLog, RuleMatch
from automation.domain.conditions import (
    Condition,
    ConditionInterpreter,
    Operator,
    parse_conditions,
)
from automation.domain.schedule import build_trigger, next_due, is_due

__all__ = [
    "AutomationRule",
    "AutomationLog",
    "RuleMatch",
    "Condition",
    "ConditionInterpreter",
    "Operator",
    "parse_conditions",
    "build_trigger",
    "next_due",
    "is_due",
]
