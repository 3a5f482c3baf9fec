"""Monotonic clock port and system adapter.

Used for uptime and elapsed-time measurement.  Only differences between
two :meth:`ClockPort.now` calls are meaningful.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic time source; tests substitute a fake clock."""

    def now(self) -> float: ...


class SystemClock:
    """Production clock wrapping :func:`time.monotonic`."""

    def now(self) -> float:
        return time.monotonic()
