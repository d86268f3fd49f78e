"""
Clock abstraction for the execution engine.

All window checks, timestamps and cooldown waits go through a Clock so tests
can drive the engine with synthetic time.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    """Source of the current time and of blocking waits."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current local time."""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the caller for the given number of seconds."""
        pass


class SystemClock(Clock):
    """Wall clock backed by the operating system scheduler."""

    def now(self) -> datetime:
        return datetime.now()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
