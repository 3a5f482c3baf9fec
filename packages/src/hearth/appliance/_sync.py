"""Protocol listener: keeps the device state store in step with the appliance.

Inbound state messages are queued to a single listener task which, per
message:

1. resolves and decodes it (:class:`~hearth.exceptions.ParseError` on
   an unknown suffix or a bad payload),
2. under the store's write lock appends it to the raw history and, when
   decoding succeeded, replaces the property's entry,
3. on success refreshes derived telemetry and the webhook state.

Parse errors are logged; the message stays in history and nothing else
happens.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from hearth._bus import EventBus
from hearth._mqtt import MqttConnectionAware, MqttPort
from hearth._producer import Producer
from hearth.appliance._protocol import (
    DEFAULT_NAMESPACE,
    ApplianceTopics,
    RawMessage,
    state_queries,
    telemetry_readings,
)
from hearth.appliance._store import DeviceStateStore
from hearth.exceptions import ParseError

logger = logging.getLogger(__name__)

LABEL_NAMES = ("kind", "unit")


class LinkState(enum.StrEnum):
    """Appliance link state.

    ``SYNCHRONIZED`` is informational: every property has been seen.
    """

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SYNCHRONIZED = "synchronized"


@runtime_checkable
class StatePushTarget(Protocol):
    """Receiver of full-state webhook queries (the notification forwarder)."""

    def push_state(self, queries: Iterable[dict[str, str | int]]) -> None: ...


class ApplianceSync:
    """Appliance component: subscriptions, listener task and refresh.

    The component is itself a producer: at start it registers one gauge
    named *metric_name* with labels ``kind`` and ``unit`` and publishes
    derived readings under it on every refresh.

    Args:
        mqtt: Transport used to subscribe to the state topics.
        bus: Event bus derived readings are published on.
        device_id: Appliance id inside its namespace.
        namespace: Protocol namespace (``appliance/heaterfan``).
        metric_name: Gauge name for derived readings.
        history_size: Raw messages kept by the store.
        state_target: Optional receiver of full-state pushes.
        refresh_debounce: Seconds to coalesce refreshes; ``0`` refreshes
            after every successful update.
    """

    def __init__(
        self,
        *,
        mqtt: MqttPort,
        bus: EventBus,
        device_id: str,
        namespace: str = DEFAULT_NAMESPACE,
        metric_name: str = "roomA",
        history_size: int = 1000,
        state_target: StatePushTarget | None = None,
        refresh_debounce: float = 0.0,
    ) -> None:
        self._mqtt = mqtt
        self._bus = bus
        self._topics = ApplianceTopics(device_id=device_id, namespace=namespace)
        self._metric_name = metric_name
        self._history_size = history_size
        self._state_target = state_target
        self._refresh_debounce = refresh_debounce
        self._store = DeviceStateStore(history_size=history_size)
        self._producer: Producer | None = None
        self._inbox: asyncio.Queue[RawMessage] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._pending_refresh: asyncio.Task[None] | None = None
        self._state = LinkState.DISCONNECTED
        self._watching_link = False

    # -- Properties ---------------------------------------------------------

    @property
    def topics(self) -> ApplianceTopics:
        return self._topics

    @property
    def store(self) -> DeviceStateStore:
        return self._store

    @property
    def link_state(self) -> LinkState:
        return self._state

    @property
    def device_id(self) -> str:
        return self._topics.device_id

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Register the gauge, start the listener and subscribe.

        The link becomes ``CONNECTED`` once all state topics are
        subscribed on a live broker session.  A transport that reports
        its session (:class:`~hearth.MqttConnectionAware`) moves the link
        between ``DISCONNECTED`` and ``CONNECTED`` as sessions come and
        go; any other transport is taken to be connected after
        subscribing.
        """
        self._store = DeviceStateStore(history_size=self._history_size)
        self._inbox = asyncio.Queue()
        self._producer = Producer(
            self._bus,
            name=self._metric_name,
            label_names=LABEL_NAMES,
        )
        self._producer.register()
        self._task = asyncio.create_task(
            self._listen(),
            name=f"hearth-appliance-{self.device_id}",
        )
        for key in self._topics.keys():
            await self._mqtt.subscribe(key)
        if isinstance(self._mqtt, MqttConnectionAware):
            if not self._watching_link:
                self._mqtt.on_connection_change(self._on_connection_change)
                self._watching_link = True
            self._on_connection_change(self._mqtt.is_connected)
        else:
            self._on_connection_change(True)

    async def stop(self) -> None:
        """Cancel the listener; in-flight processing is abandoned."""
        for task in (self._pending_refresh, self._task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._pending_refresh = None
        self._task = None
        self._state = LinkState.DISCONNECTED
        logger.info("Appliance %s disconnected", self.device_id)

    def _on_connection_change(self, online: bool) -> None:
        if self._task is None:
            return
        if not online:
            if self._state is not LinkState.DISCONNECTED:
                logger.warning(
                    "Appliance %s lost its broker session",
                    self.device_id,
                    extra={"device": self.device_id},
                )
            self._state = LinkState.DISCONNECTED
            return
        if self._state is LinkState.DISCONNECTED:
            self._state = LinkState.CONNECTED
            logger.info(
                "Appliance %s connected (%d state topics)",
                self.device_id,
                len(self._topics.keys()),
                extra={"device": self.device_id},
            )

    # -- Ingress ------------------------------------------------------------

    async def on_message(self, topic: str, payload: bytes) -> None:
        """MQTT callback: queue state messages for the listener task."""
        if not self._topics.owns(topic):
            return
        self._inbox.put_nowait(RawMessage(topic=topic, payload=payload))

    async def _listen(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                await self.process(message)
            except Exception:
                logger.exception("Failed to process %s", message.topic)

    async def process(self, message: RawMessage) -> bool:
        """Decode and record one message.

        Returns:
            ``True`` when the store was updated.
        """
        try:
            decoded = self._topics.decode(message)
        except ParseError as exc:
            logger.warning(
                "Ignoring state message: %s",
                exc,
                extra={"device": self.device_id, "topic": message.topic},
            )
            await self._store.record(message)
            return False

        await self._store.record(message, (message.topic, decoded))
        await self._check_synchronized()
        await self._trigger_refresh()
        return True

    # -- Refresh ------------------------------------------------------------

    async def _trigger_refresh(self) -> None:
        if self._refresh_debounce <= 0:
            await self.refresh()
            return
        if self._pending_refresh is not None and not self._pending_refresh.done():
            return
        self._pending_refresh = asyncio.create_task(self._debounced_refresh())

    async def _debounced_refresh(self) -> None:
        await asyncio.sleep(self._refresh_debounce)
        try:
            await self.refresh()
        except Exception:
            logger.exception(
                "Refresh failed for appliance %s",
                self.device_id,
                extra={"device": self.device_id},
            )

    async def refresh(self) -> None:
        """Publish derived readings and push the full state.

        Both are built from one read-locked copy of the store.
        """
        state = await self._store.by_property()
        if self._producer is not None:
            for value, labels in telemetry_readings(state):
                self._producer.emit(value, labels)
        if self._state_target is not None:
            self._state_target.push_state(state_queries(self.device_id, state))

    async def _check_synchronized(self) -> None:
        if self._state is not LinkState.CONNECTED:
            return
        if await self._store.keys() >= set(self._topics.keys()):
            self._state = LinkState.SYNCHRONIZED
            logger.info(
                "Appliance %s synchronized",
                self.device_id,
                extra={"device": self.device_id},
            )
