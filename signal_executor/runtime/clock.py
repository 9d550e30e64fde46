"""
Clocks for the reconciliation loop.

SystemClock is the production clock (wall time, real asyncio.sleep).
SimClock is deterministic: sleeps return immediately and advance
simulated time, so convergence loops run in tests without real waiting.

Usage:
    clock = SimClock(start=datetime(2025, 1, 1, tzinfo=timezone.utc))
    await clock.sleep(1.5)      # returns at once, now() moves 1.5s
    clock.sleeps                # [1.5]
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional


class SystemClock:
    """Wall-clock time and real sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SimClock:
    """Deterministic simulated clock.

    Safe within a single asyncio loop (no threading).
    All time queries return simulated time.
    All sleeps return immediately (or call a step callback).
    """

    def __init__(
        self,
        start: Optional[datetime] = None,
        *,
        step_callback: Optional[Callable[["SimClock", float], None]] = None,
    ):
        """
        Args:
            start: Initial simulated time (must be timezone-aware). Defaults to now.
            step_callback: Optional callback(clock, requested_seconds) called on each sleep.
        """
        start = start or datetime.now(timezone.utc)
        if start.tzinfo is None:
            raise ValueError("SimClock start must be timezone-aware")
        self._current: datetime = start
        self._start: datetime = start
        self._step_callback = step_callback
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        """Return current simulated UTC time."""
        return self._current

    def advance(self, *, seconds: float = 0) -> None:
        """Advance simulated time."""
        if seconds < 0:
            raise ValueError("Cannot advance by negative delta")
        self._current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        """Replacement for asyncio.sleep(). Returns immediately after advancing time."""
        self.sleeps.append(seconds)
        self.advance(seconds=seconds)
        if self._step_callback:
            self._step_callback(self, seconds)
        # Yield control to event loop to allow task switching
        await asyncio.sleep(0)

    @property
    def elapsed(self) -> timedelta:
        """Total simulated time elapsed since start."""
        return self._current - self._start

    def __repr__(self) -> str:
        return f"SimClock(now={self._current.isoformat()}, elapsed={self.elapsed})"
