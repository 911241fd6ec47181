"""
Automation Module
=================

Bounded context for rule-based ticket automation.

Responsibilities:
- Parse and evaluate rule trigger conditions against ticket/task events
- Execute matched actions (assign, change status/priority, tag, notify,
  create task, escalate)
- Keep the append-only automation log
- Decide when scheduled rules are due
"""

__version__ = "1.0.0"
