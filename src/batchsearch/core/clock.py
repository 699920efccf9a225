"""
Clock abstraction used for throttling and run-time budgets.

The batch search runner never reads the wall clock directly; it asks an
injected clock, so tests can advance time deterministically.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Protocol for time sources."""

    def now_ms(self) -> float:
        """Return the current time in milliseconds."""
        ...

    def sleep_ms(self, milliseconds: int) -> None:
        """Block the calling thread for the given number of milliseconds."""
        ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now_ms(self) -> float:
        return time.time() * 1000

    def sleep_ms(self, milliseconds: int) -> None:
        if milliseconds > 0:
            time.sleep(milliseconds / 1000.0)
