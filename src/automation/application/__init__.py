"""
Automation Application Layer
=============================

Contains:
- RuleEvaluator: matches rules against events
- ActionExecutor: applies one matched action
- AutomationEngine: runs both and persists automation logs
- Collaborator interfaces
"""

from automation.application.services import (
    RuleEvaluator,
    ActionExecutor,
    ActionOutcome,
    AutomationEngine,
    EngineResult,
    IAutomationStorage,
    IUserDirectory,
    INotifier,
    ITaskCreator,
    render_message,
)

__all__ = [
    "RuleEvaluator",
    "ActionExecutor",
    "ActionOutcome",
    "AutomationEngine",
    "EngineResult",
    "IAutomationStorage",
    "IUserDirectory",
    "INotifier",
    "ITaskCreator",
    "render_message",
]
