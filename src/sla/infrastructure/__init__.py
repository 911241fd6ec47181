"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for tickets, SLA and automation:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Config watcher, webhook notifier, task creator, sweep scheduler
"""

from sla.infrastructure.repositories import SQLAlchemyStorage
from sla.infrastructure.external import (
    SLAConfigManager,
    CircuitBreaker,
    CircuitState,
    WebhookNotifier,
    SQLAlchemyTaskCreator,
    SweepScheduler,
)

__all__ = [
    "SQLAlchemyStorage",
    "SLAConfigManager",
    "CircuitBreaker",
    "CircuitState",
    "WebhookNotifier",
    "SQLAlchemyTaskCreator",
    "SweepScheduler",
]
