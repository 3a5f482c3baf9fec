"""In-process publish/subscribe event bus.

Producers publish :class:`RegistrationEvent` and :class:`ReadingEvent`
objects; consumers hold a :class:`Subscription` with its own bounded
inbox.  A subscription may cover several event types, in which case all
of them share one inbox and arrive in publish order.

Delivery is best-effort and in-memory:

- :meth:`EventBus.publish` never blocks.  An event arriving at a full
  inbox is dropped for that subscriber only and a WARNING is logged.
- Events published by one producer reach each subscriber in the order
  they were published.
- Nothing is persisted; closing the bus discards pending events.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

from hearth.exceptions import StartupError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class MetricKind(enum.StrEnum):
    """Kind of metric a producer registers."""

    GAUGE = "gauge"
    COUNTER = "counter"


class Step(enum.Enum):
    """Unit step applied to a metric instead of a scalar value."""

    INCREMENT = "increment"
    DECREMENT = "decrement"


@dataclass(frozen=True, slots=True)
class RegistrationEvent:
    """Declares the metric a producer will report readings for.

    Re-registering the same identity replaces the prior definition.
    """

    identity: uuid.UUID
    kind: MetricKind
    name: str
    label_names: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ReadingEvent:
    """One measurement or state change from a registered producer."""

    identity: uuid.UUID
    value: float | Step
    labels: tuple[str, ...] = ()
    category: str | None = None


Event = RegistrationEvent | ReadingEvent

EVENT_TYPES: tuple[type[Event], ...] = (RegistrationEvent, ReadingEvent)

# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


class _Closed:
    """Inbox sentinel marking the end of a subscription."""


_CLOSED = _Closed()


class Subscription:
    """A consumer's bounded inbox on an :class:`EventBus`.

    Iterate with ``async for`` to receive events; iteration ends once
    the subscription (or the bus) is closed.
    """

    def __init__(
        self,
        bus: EventBus,
        event_types: tuple[type[Event], ...],
        *,
        maxsize: int,
        name: str = "",
    ) -> None:
        self._bus = bus
        self._event_types = event_types
        self._queue: asyncio.Queue[Event | _Closed] = asyncio.Queue(maxsize)
        self._name = name or "/".join(t.__name__ for t in event_types)
        self._closed = False

    @property
    def event_types(self) -> tuple[type[Event], ...]:
        return self._event_types

    @property
    def pending(self) -> int:
        """Number of events waiting in the inbox."""
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: Event) -> bool:
        """Enqueue *event* without blocking; ``False`` if it was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Inbox of subscriber %s is full, dropping %s",
                self._name,
                type(event).__name__,
            )
            return False
        return True

    def close(self) -> None:
        """Unsubscribe and wake the consumer.  Idempotent.

        Events still in the inbox are discarded.
        """
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            # Leave the sentinel for any other waiter.
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------


class EventBus:
    """Typed fan-out of events to bounded per-subscriber inboxes.

    Args:
        inbox_size: Capacity of every subscription's inbox.
    """

    def __init__(self, *, inbox_size: int = 1000) -> None:
        if inbox_size < 1:
            msg = f"inbox_size must be positive, got {inbox_size}"
            raise ValueError(msg)
        self._inbox_size = inbox_size
        self._channels: dict[type[Event], list[Subscription]] = {
            event_type: [] for event_type in EVENT_TYPES
        }
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Open the bus for publishing and subscribing."""
        self._running = True
        logger.debug("Event bus started (inbox_size=%d)", self._inbox_size)

    def close(self) -> None:
        """Close the bus and every open subscription.  Idempotent."""
        if not self._running:
            return
        self._running = False
        subscriptions = {
            id(sub): sub for subs in self._channels.values() for sub in subs
        }
        for sub in subscriptions.values():
            sub.close()
        logger.debug("Event bus closed")

    def subscribe(
        self,
        *event_types: type[Event],
        name: str = "",
    ) -> Subscription:
        """Open a subscription receiving every event of *event_types*.

        Raises:
            StartupError: If the bus is not running.
            TypeError: If an event type has no channel on this bus.
        """
        self._ensure_running()
        if not event_types:
            msg = "subscribe() needs at least one event type"
            raise TypeError(msg)
        event_types = tuple(dict.fromkeys(event_types))
        for event_type in event_types:
            if event_type not in self._channels:
                msg = f"No channel for event type {event_type!r}"
                raise TypeError(msg)
        sub = Subscription(
            self,
            tuple(event_types),
            maxsize=self._inbox_size,
            name=name,
        )
        for event_type in event_types:
            self._channels[event_type].append(sub)
        return sub

    def publish(self, event: Event) -> int:
        """Fan *event* out to all current subscribers of its type.

        Returns:
            The number of subscribers the event was delivered to.

        Raises:
            StartupError: If the bus is not running.
            TypeError: If the event's type has no channel on this bus.
        """
        self._ensure_running()
        channel = self._channels.get(type(event))
        if channel is None:
            msg = f"No channel for event type {type(event).__name__}"
            raise TypeError(msg)
        delivered = 0
        for sub in list(channel):
            if sub.offer(event):
                delivered += 1
        return delivered

    def subscriber_count(self, event_type: type[Event]) -> int:
        return len(self._channels.get(event_type, ()))

    def _ensure_running(self) -> None:
        if not self._running:
            msg = "Event bus is not running; call start() first"
            raise StartupError(msg)

    def _unsubscribe(self, sub: Subscription) -> None:
        for event_type in sub.event_types:
            channel = self._channels[event_type]
            if sub in channel:
                channel.remove(sub)
