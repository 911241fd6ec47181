"""
Cron window arithmetic for scheduled rules.

Pure functions of (cron_expr, last_run_at, created_at, now); the sweep
decides whether to run a rule with these and never touches a real timer.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.triggers.cron import CronTrigger

from core import MalformedRuleConditionException


def build_trigger(cron_expr: str, rule_id: Optional[str] = None) -> CronTrigger:
    """Parse a standard 5-field crontab expression (evaluated in UTC)."""
    if not cron_expr or not cron_expr.strip():
        raise MalformedRuleConditionException(rule_id, "scheduled rule has no schedule_cron")
    try:
        return CronTrigger.from_crontab(cron_expr.strip(), timezone=timezone.utc)
    except ValueError as e:
        raise MalformedRuleConditionException(rule_id, f"invalid cron '{cron_expr}': {e}") from e


def next_due(cron_expr: str, last_run_at: Optional[datetime], now: datetime,
             rule_id: Optional[str] = None,
             created_at: Optional[datetime] = None) -> Optional[datetime]:
    """
    First cron fire time strictly after the rule's baseline.

    The baseline is last_run_at, or created_at for a rule that never ran.
    Without either, the first window is the next fire time after ``now``.
    The returned instant is also the start of the window the rule runs in.
    """
    trigger = build_trigger(cron_expr, rule_id)
    baseline = last_run_at or created_at or now
    start = baseline.astimezone(timezone.utc) + timedelta(microseconds=1)
    return trigger.get_next_fire_time(None, start)


def is_due(cron_expr: str, last_run_at: Optional[datetime], now: datetime,
           rule_id: Optional[str] = None,
           created_at: Optional[datetime] = None) -> bool:
    """Whether a cron window opened since the rule's baseline."""
    due = next_due(cron_expr, last_run_at, now, rule_id, created_at)
    return due is not None and due <= now
