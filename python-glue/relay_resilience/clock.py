"""Time sources shared by the rate limiter, circuit breaker and retry handler"""

import time
from abc import ABC, abstractmethod
from typing import List, Optional


class Clock(ABC):
    """Source of "now" for every time-based decision"""

    @abstractmethod
    def now(self) -> float:
        """Current time as epoch seconds"""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the caller for the given number of seconds"""
        pass


class SystemClock(Clock):
    """Wall clock backed by the time module"""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class ManualClock(Clock):
    """Deterministic clock for tests.

    Time only moves when advanced explicitly. ``sleep`` advances the clock
    instead of blocking and records each requested duration.
    """

    def __init__(self, start: Optional[float] = None):
        self._now = float(start) if start is not None else 1_700_000_000.0
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """Move time forward (or backward for a negative value)"""
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self._now += seconds
