"""
Clock abstraction.

Calculators and services never read wall-clock time directly; they receive
an IClock so tests can pin "now".
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class IClock(ABC):
    """Interface for the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware instant."""


class SystemClock(IClock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
