"""
Process Health - Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock for sample capture times.

- Every sample timestamp comes from an injected clock
- All times are integer epoch milliseconds (UTC)
- MockClock enables deterministic tests of retention
  windows and bucketing

============================================================
"""

from abc import ABC, abstractmethod
from typing import Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the monitoring clock."""

    @abstractmethod
    def now_ms(self) -> int:
        """Get current time as epoch milliseconds."""
        pass


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_ms: Optional[int] = None):
        """
        Initialize mock clock.

        Args:
            initial_ms: Starting time in epoch ms (defaults to now)
        """
        self._time_ms = initial_ms if initial_ms is not None else int(time.time() * 1000)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._time_ms

    def advance(self, seconds: float = 0, milliseconds: int = 0) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            milliseconds: Additional milliseconds to advance
        """
        with self._lock:
            self._time_ms += int(seconds * 1000) + milliseconds
