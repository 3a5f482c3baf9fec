"""MQTT transport for the hub.

Everything that talks to a broker goes through :class:`MqttPort`, a
two-method protocol (``publish`` and ``subscribe``).  Inbound delivery
and connection management are separate, optional capabilities
(:class:`MqttMessageHandler`, :class:`MqttLifecycle`,
:class:`MqttConnectionAware`) so the hub can detect them with
``isinstance``.

Adapters:

- :class:`MqttClient` keeps one aiomqtt session alive in a background
  task and re-dials after a drop.
- :class:`MockMqttClient` records traffic in memory for tests.

Inbound payloads reach callbacks as raw ``bytes``; the component owning
the topic decodes them.  A write while no session is up raises
:class:`NotConnectedError`; a write the broker rejects raises
:class:`TransportError`.  ``aiomqtt`` is only imported inside
:class:`MqttClient`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from hearth._settings import MqttSettings
from hearth.exceptions import NotConnectedError, TransportError

logger = logging.getLogger(__name__)

Payload = str | bytes

MessageCallback = Callable[[str, bytes], Awaitable[None]]
"""Async ``(topic, payload)`` callback for inbound messages."""

ConnectionCallback = Callable[[bool], None]
"""Called with ``True`` when a broker session comes up, ``False`` when it ends."""

SUBSCRIBE_QOS = 1


@dataclass(frozen=True)
class WillConfig:
    """Last will published by the broker when the hub vanishes."""

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Outbound writes and topic subscriptions."""

    async def publish(
        self,
        topic: str,
        payload: Payload,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Transports that push inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Transports owning a connection that is started and stopped."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttConnectionAware(Protocol):
    """Transports that report their broker session coming and going."""

    @property
    def is_connected(self) -> bool: ...

    def on_connection_change(self, callback: ConnectionCallback) -> None: ...


def _notify(callbacks: list[ConnectionCallback], online: bool) -> None:
    for callback in callbacks:
        try:
            callback(online)
        except Exception:
            logger.exception("Connection callback failed")


def _as_bytes(payload: object) -> bytes | None:
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


# ---------------------------------------------------------------------------
# In-memory double
# ---------------------------------------------------------------------------


class PublishedMessage(NamedTuple):
    topic: str
    payload: Payload
    retain: bool
    qos: int


@dataclass
class MockMqttClient:
    """Records publishes and subscriptions; :meth:`deliver` fakes inbound traffic.

    Set ``fail_topics`` to make writes to those topics raise
    :class:`TransportError`.  While ``connected`` is false every write
    raises :class:`NotConnectedError`; :meth:`set_connected` flips it and
    tells the connection callbacks.  Failed writes are not recorded.
    """

    published: list[PublishedMessage] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    fail_topics: set[str] = field(default_factory=set)
    connected: bool = True
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _connection_callbacks: list[ConnectionCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: Payload,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        if not self.connected:
            msg = "MQTT client is not connected"
            raise NotConnectedError(msg)
        if topic in self.fail_topics:
            msg = f"Simulated publish failure on {topic}"
            raise TransportError(msg, topic=topic)
        self.published.append(PublishedMessage(topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def on_connection_change(self, callback: ConnectionCallback) -> None:
        self._connection_callbacks.append(callback)

    def set_connected(self, online: bool) -> None:
        """Simulate the broker session coming up or dropping."""
        if online == self.connected:
            return
        self.connected = online
        _notify(self._connection_callbacks, online)

    async def deliver(self, topic: str, payload: Payload) -> None:
        """Hand ``(topic, payload)`` to every callback, in registration order."""
        raw = _as_bytes(payload)
        assert raw is not None
        for callback in self._callbacks:
            await callback(topic, raw)

    @property
    def publish_count(self) -> int:
        return len(self.published)

    def get_messages_for(self, topic: str) -> list[tuple[Payload, bool, int]]:
        """``(payload, retain, qos)`` of every write to *topic*, oldest first."""
        return [
            (m.payload, m.retain, m.qos) for m in self.published if m.topic == topic
        ]

    def reset(self) -> None:
        """Forget recorded traffic and registered callbacks."""
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()
        self._connection_callbacks.clear()


# ---------------------------------------------------------------------------
# Broker adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Broker adapter backed by *aiomqtt*.

    :meth:`start` spawns a task that opens a session, re-subscribes to
    every topic requested so far and pumps inbound messages to the
    callbacks.  When the session drops the task waits
    ``settings.reconnect_interval`` seconds and dials again.  Keep-alive
    (``settings.keepalive``) only serves to notice a dead broker.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _topics: set[str] = field(default_factory=set, init=False, repr=False)
    _session: Any = field(default=None, init=False, repr=False)
    _runner: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _online: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _closing: bool = field(default=False, init=False, repr=False)
    _sessions: int = field(default=0, init=False, repr=False)
    _connection_callbacks: list[ConnectionCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    # -- MqttPort -----------------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: Payload,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Write *payload* to *topic* on the current session.

        Raises:
            NotConnectedError: No session is up.
            TransportError: The broker rejected or lost the write.
        """
        import aiomqtt

        session = self._session
        if session is None:
            msg = f"MQTT client is not connected; cannot publish to {topic}"
            raise NotConnectedError(msg)
        try:
            await session.publish(topic, payload, retain=retain, qos=qos)
        except aiomqtt.MqttError as exc:
            msg = f"Publish to {topic} failed: {exc}"
            raise TransportError(msg, topic=topic) from exc
        logger.debug(
            "-> %s qos=%d retain=%s",
            topic,
            qos,
            retain,
            extra={"topic": topic},
        )

    async def subscribe(self, topic: str) -> None:
        """Subscribe now if a session is up, and on every later session."""
        self._topics.add(topic)
        if self._session is not None:
            await self._session.subscribe(topic, qos=SUBSCRIBE_QOS)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    def on_connection_change(self, callback: ConnectionCallback) -> None:
        """Call *callback* as each session comes up (after re-subscribing) and ends."""
        self._connection_callbacks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Spawn the session task.  A second call while running is a no-op."""
        if self._runner is not None and not self._runner.done():
            return
        self._closing = False
        self._runner = asyncio.create_task(self._run(), name="hearth-mqtt")

    async def stop(self) -> None:
        """Cancel the session task and drop the session.  Idempotent."""
        self._closing = True
        if self._runner is not None:
            self._runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._runner
            self._runner = None
        self._session = None
        self._online.clear()

    @property
    def is_connected(self) -> bool:
        return self._online.is_set()

    @property
    def sessions(self) -> int:
        """Number of sessions established since construction."""
        return self._sessions

    async def wait_connected(self) -> None:
        await self._online.wait()

    # -- Session task -------------------------------------------------------

    def _client_options(self, aiomqtt: Any) -> dict[str, Any]:
        secret = self.settings.password
        password = secret.get_secret_value() if secret is not None else None
        will = self.will
        return {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.username,
            "password": password,
            "identifier": self.settings.client_id or None,
            "keepalive": self.settings.keepalive,
            "will": (
                aiomqtt.Will(
                    topic=will.topic,
                    payload=will.payload,
                    qos=will.qos,
                    retain=will.retain,
                )
                if will is not None
                else None
            ),
        }

    async def _run(self) -> None:
        import aiomqtt

        while not self._closing:
            try:
                await self._session_once(aiomqtt)
            except asyncio.CancelledError:
                raise
            except aiomqtt.MqttError as exc:
                logger.warning(
                    "MQTT session with %s:%d ended (%s); redialing in %.1fs",
                    self.settings.host,
                    self.settings.port,
                    exc,
                    self.settings.reconnect_interval,
                )
            except Exception:
                logger.exception(
                    "MQTT session failed; redialing in %.1fs",
                    self.settings.reconnect_interval,
                )
            if not self._closing:
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _session_once(self, aiomqtt: Any) -> None:
        async with aiomqtt.Client(**self._client_options(aiomqtt)) as session:
            self._session = session
            try:
                for topic in sorted(self._topics):
                    await session.subscribe(topic, qos=SUBSCRIBE_QOS)
                self._sessions += 1
                self._online.set()
                logger.info(
                    "MQTT session %d up with %s:%d (%d topics)",
                    self._sessions,
                    self.settings.host,
                    self.settings.port,
                    len(self._topics),
                )
                _notify(self._connection_callbacks, True)
                async for message in session.messages:
                    await self._dispatch(str(message.topic), message.payload)
            finally:
                online = self._online.is_set()
                self._online.clear()
                self._session = None
                if online:
                    _notify(self._connection_callbacks, False)

    async def _dispatch(self, topic: str, payload: object) -> None:
        """Run every callback for one message; one failing callback spares the rest."""
        raw = _as_bytes(payload)
        if raw is None:
            logger.debug("Ignoring empty message on %s", topic)
            return
        for callback in self._callbacks:
            try:
                await callback(topic, raw)
            except Exception:
                logger.exception(
                    "Message callback failed for %s",
                    topic,
                    extra={"topic": topic},
                )
