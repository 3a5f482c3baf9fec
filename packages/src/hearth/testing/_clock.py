"""Deterministic fake clock for testing."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FakeClock:
    """Test double for :class:`~hearth.ClockPort`.

    Example::

        clock = FakeClock(42.0)
        clock.advance(8)
        assert clock.now() == 50.0
    """

    _time: float = 0.0

    def now(self) -> float:
        return self._time

    def advance(self, seconds: float) -> None:
        """Move the clock forward by *seconds*."""
        self._time += seconds
