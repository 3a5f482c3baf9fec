"""Device state store: canonical key → latest decoded property value.

The store also keeps a bounded FIFO history of raw inbound messages.
Access is guarded by a reader/writer lock: the protocol listener takes
the write lock for one history append plus one entry replace; refresh
and command lookups take the read lock only to copy state out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator

from hearth.appliance._protocol import Property, PropertyValue, RawMessage, Value

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Asyncio reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone.  A waiting writer blocks new readers so writers cannot starve.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0,
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0,
                )
            finally:
                self._writers_waiting -= 1
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class DeviceStateStore:
    """Latest property values plus a bounded raw-message history.

    Args:
        history_size: Maximum number of raw messages retained; the
            oldest message is evicted first.
    """

    def __init__(self, *, history_size: int = 1000) -> None:
        if history_size < 1:
            msg = f"history_size must be positive, got {history_size}"
            raise ValueError(msg)
        self._lock = ReadWriteLock()
        self._entries: dict[str, PropertyValue] = {}
        self._history: deque[RawMessage] = deque(maxlen=history_size)

    async def record(
        self,
        message: RawMessage,
        update: tuple[str, PropertyValue] | None = None,
    ) -> None:
        """Append *message* to history and, when given, apply *update*.

        *update* is a ``(canonical key, value)`` pair replacing any
        previous entry for that key.  Both happen under one write lock.
        """
        async with self._lock.write():
            self._history.append(message)
            if update is not None:
                key, value = update
                self._entries[key] = value

    async def snapshot(self) -> dict[str, PropertyValue]:
        """Copy out every entry under the read lock."""
        async with self._lock.read():
            return dict(self._entries)

    async def by_property(self) -> dict[Property, Value]:
        """Copy out the current values keyed by property."""
        async with self._lock.read():
            return {entry.property: entry.value for entry in self._entries.values()}

    async def get(self, key: str) -> PropertyValue | None:
        async with self._lock.read():
            return self._entries.get(key)

    async def history(self) -> list[RawMessage]:
        """Copy out the raw history, oldest first."""
        async with self._lock.read():
            return list(self._history)

    async def keys(self) -> set[str]:
        async with self._lock.read():
            return set(self._entries)
