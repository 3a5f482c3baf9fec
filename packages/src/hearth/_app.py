"""Hub orchestrator: composition root and lifecycle.

:class:`Hub` wires the event bus, its two consumers (metric registry and
webhook forwarder), the optional heater/fan appliance with its command
router, health reporting and MQTT command ingress, then runs until a
shutdown signal arrives.

Typical usage::

    import hearth

    hub = hearth.Hub(version="0.3.0")

    @hub.telemetry("roomB", interval=30, category="temperature")
    async def room_b() -> float:
        return await read_sensor()

    hub.run()

Adapters that push readings on their own schedule instead obtain a
:class:`~hearth.Producer` from :meth:`Hub.producer` inside the lifespan.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any

from hearth._bus import EventBus, MetricKind
from hearth._clock import ClockPort, SystemClock
from hearth._errors import ErrorPublisher
from hearth._health import HealthReporter, build_will_config
from hearth._logging import configure_logging
from hearth._metrics import MetricRegistry
from hearth._mqtt import MqttClient, MqttLifecycle, MqttMessageHandler, MqttPort
from hearth._producer import Producer
from hearth._router import TopicRouter
from hearth._settings import Settings
from hearth._webhook import WebhookForwarder
from hearth.appliance._commands import (
    CommandRequest,
    CommandRouter,
    ProtocolWrite,
    parse_command,
)
from hearth.appliance._sync import ApplianceSync
from hearth.exceptions import NotConnectedError, StartupError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _TelemetryRegistration:
    """One @hub.telemetry registration."""

    name: str
    func: Callable[[], Awaitable[float | None]]
    interval: float
    kind: MetricKind
    label_names: tuple[str, ...]
    labels: tuple[str, ...]
    category: str | None


type LifespanFunc = Callable[[Hub], AbstractAsyncContextManager[None]]
"""Factory of the async context manager wrapped around a running hub."""


@asynccontextmanager
async def _noop_lifespan(_hub: Hub) -> AsyncIterator[None]:
    yield


class Hub:
    """Central composition root and lifecycle orchestrator.

    Args:
        name: Service name used in logs and the generated MQTT client id.
        version: Version reported by ``--version`` and heartbeats.
        description: Short description for CLI help text.
        settings_class: Settings class instantiated at startup.
        heartbeat_interval: Seconds between heartbeats on
            ``{prefix}/status``; ``None`` publishes only the initial one.
        lifespan: Async context manager factory receiving the running
            hub.  Code before ``yield`` runs once every component is up;
            code after ``yield`` runs before teardown.
    """

    def __init__(
        self,
        name: str = "hearth",
        version: str = "0.0.0",
        *,
        description: str = "Home telemetry and control hub",
        settings_class: type[Settings] = Settings,
        heartbeat_interval: float | None = 60.0,
        lifespan: LifespanFunc | None = None,
    ) -> None:
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class
        if heartbeat_interval is not None and heartbeat_interval <= 0:
            msg = f"heartbeat_interval must be positive, got {heartbeat_interval}"
            raise ValueError(msg)
        self._heartbeat_interval = heartbeat_interval
        self._lifespan: LifespanFunc = (
            lifespan if lifespan is not None else _noop_lifespan
        )
        self._telemetry: list[_TelemetryRegistration] = []

        self._bus: EventBus | None = None
        self._metrics: MetricRegistry | None = None
        self._forwarder: WebhookForwarder | None = None
        self._appliance: ApplianceSync | None = None
        self._commands: CommandRouter | None = None
        self._appliance_name: str | None = None

    # --- Registration ------------------------------------------------------

    def telemetry(
        self,
        name: str,
        *,
        interval: float,
        kind: MetricKind = MetricKind.GAUGE,
        label_names: Sequence[str] = (),
        labels: Sequence[str] = (),
        category: str | None = None,
    ) -> Callable[..., Any]:
        """Register a polling producer.

        The decorated coroutine is awaited every *interval* seconds; each
        numeric result is published as a reading, ``None`` skips the
        cycle.  Errors are logged and polling continues.

        Raises:
            ValueError: On a non-positive interval, a duplicate name or
                a label arity mismatch.
        """
        if interval <= 0:
            msg = f"Telemetry interval must be positive, got {interval}"
            raise ValueError(msg)
        if any(reg.name == name for reg in self._telemetry):
            msg = f"Telemetry '{name}' is already registered"
            raise ValueError(msg)
        if len(labels) != len(label_names):
            msg = f"Telemetry '{name}' needs {len(label_names)} label values"
            raise ValueError(msg)

        def decorator(
            func: Callable[[], Awaitable[float | None]],
        ) -> Callable[[], Awaitable[float | None]]:
            self._telemetry.append(
                _TelemetryRegistration(
                    name=name,
                    func=func,
                    interval=interval,
                    kind=kind,
                    label_names=tuple(label_names),
                    labels=tuple(labels),
                    category=category,
                ),
            )
            return func

        return decorator

    # --- Running-hub accessors ---------------------------------------------

    @property
    def bus(self) -> EventBus:
        """The running event bus.

        Raises:
            StartupError: Before the hub has started.
        """
        if self._bus is None:
            msg = "Hub is not running"
            raise StartupError(msg)
        return self._bus

    @property
    def metrics(self) -> MetricRegistry:
        if self._metrics is None:
            msg = "Hub is not running"
            raise StartupError(msg)
        return self._metrics

    @property
    def appliance(self) -> ApplianceSync | None:
        return self._appliance

    def producer(
        self,
        name: str,
        *,
        kind: MetricKind = MetricKind.GAUGE,
        label_names: Sequence[str] = (),
        category: str | None = None,
    ) -> Producer:
        """Create a producer publishing on the hub's bus."""
        return Producer(
            self.bus,
            name=name,
            kind=kind,
            label_names=label_names,
            category=category,
        )

    async def command(
        self,
        request: CommandRequest | str | bytes,
    ) -> list[ProtocolWrite]:
        """Execute a command against the appliance.

        *request* may be a request model or its JSON wire form.

        Raises:
            NotConnectedError: When no appliance is configured or its
                link is down.
            ParseError: When a wire-form request is malformed.
        """
        if self._commands is None:
            msg = "No appliance is configured"
            raise NotConnectedError(msg)
        if not isinstance(request, CommandRequest):
            request = parse_command(request)
        return await self._commands.execute(request)

    # --- Running -----------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Run the hub until SIGTERM/SIGINT (blocking).

        All parameters are optional overrides for programmatic or test
        use; production code calls ``run()`` with no arguments.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    mqtt=mqtt,
                    settings=settings,
                    shutdown_event=shutdown_event,
                    clock=clock,
                ),
            )

    def cli(self) -> None:
        """Run the hub behind the Typer command-line interface."""
        from hearth._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Start, serve and stop the hub inside one event loop.

        Components stop in reverse start order once *shutdown_event* is
        set; the offline status is the last thing published.
        """
        # --- Phase 1: Infrastructure and bus consumers ---
        resolved_settings = settings if settings is not None else self._settings_class()
        prefix = resolved_settings.mqtt.topic_prefix or self._name
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()

        mqtt = self._create_mqtt(mqtt, resolved_settings, prefix)
        health_reporter = HealthReporter(
            mqtt=mqtt,
            topic_prefix=prefix,
            version=self._version,
            clock=resolved_clock,
        )
        error_publisher = ErrorPublisher(mqtt=mqtt, topic_prefix=prefix)

        bus = EventBus(inbox_size=resolved_settings.bus.inbox_size)
        bus.start()
        self._bus = bus
        await self._start_consumers(bus, resolved_settings)

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()

        shutdown_event = _shutdown_trigger(shutdown_event)

        # --- Phase 2: Appliance and command ingress ---
        router = TopicRouter(topic_prefix=prefix)
        await self._start_appliance(
            mqtt,
            resolved_settings,
            router,
            error_publisher,
            health_reporter,
        )
        for topic in router.subscriptions:
            await mqtt.subscribe(topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(router.route)

        # --- Phase 3: Serve until shutdown ---
        lifespan = self._lifespan(self)
        await lifespan.__aenter__()
        try:
            await self._publish_heartbeat(health_reporter)
            await self._serve(health_reporter, shutdown_event)
        finally:
            await _exit_lifespan(lifespan, sys.exc_info())
            await self._stop_components()

        # --- Phase 4: Go offline ---
        await health_reporter.shutdown()
        if isinstance(mqtt, MqttLifecycle):
            await mqtt.stop()
        logger.info("Shutdown complete")

    # --- Startup and shutdown steps -----------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        resolved_settings: Settings,
        prefix: str,
    ) -> MqttPort:
        if mqtt is not None:
            return mqtt
        mqtt_settings = resolved_settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    async def _start_consumers(self, bus: EventBus, settings: Settings) -> None:
        self._metrics = MetricRegistry(bus)
        await self._metrics.start()
        if settings.metrics.port is not None:
            self._metrics.serve(settings.metrics.port)

        webhook = settings.webhook
        if webhook.url is not None or webhook.state_url is not None:
            self._forwarder = WebhookForwarder(
                bus,
                url=webhook.url,
                state_url=webhook.state_url,
                timeout=webhook.timeout,
                max_in_flight=webhook.max_in_flight,
            )
            await self._forwarder.start()

    async def _start_appliance(
        self,
        mqtt: MqttPort,
        settings: Settings,
        router: TopicRouter,
        error_publisher: ErrorPublisher,
        health_reporter: HealthReporter,
    ) -> None:
        """Start the appliance component when a device id is configured."""
        appliance_settings = settings.appliance
        if appliance_settings.device_id is None:
            logger.info("No appliance configured")
            return

        appliance = ApplianceSync(
            mqtt=mqtt,
            bus=self.bus,
            device_id=appliance_settings.device_id,
            namespace=appliance_settings.namespace,
            metric_name=settings.metrics.name,
            history_size=appliance_settings.history_size,
            state_target=self._forwarder,
            refresh_debounce=appliance_settings.refresh_debounce,
        )
        commands = CommandRouter(appliance, mqtt)
        name = appliance_settings.name

        async def _command_proxy(topic: str, payload: bytes) -> None:
            try:
                writes = await self.command(payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Command on %s failed: %s",
                    topic,
                    exc,
                    extra={"device": name, "topic": topic},
                )
                await error_publisher.publish(exc, device=name)
                return
            logger.debug("Command on %s issued %d writes", topic, len(writes))

        router.register(name, _command_proxy)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(appliance.on_message)

        self._appliance = appliance
        self._appliance_name = name
        self._commands = commands
        await appliance.start()
        await health_reporter.publish_device_available(
            name,
            status=str(appliance.link_state),
        )

    async def _stop_components(self) -> None:
        """Stop in reverse start order and forget the running components."""
        if self._appliance is not None:
            await self._appliance.stop()
        if self._forwarder is not None:
            await self._forwarder.stop()
        if self._metrics is not None:
            await self._metrics.stop()
        if self._bus is not None:
            self._bus.close()
        self._appliance = self._commands = self._appliance_name = None
        self._forwarder = self._metrics = self._bus = None

    async def _serve(
        self,
        health_reporter: HealthReporter,
        shutdown_event: asyncio.Event,
    ) -> None:
        """Keep heartbeats and pollers going until *shutdown_event* is set."""
        tasks = [
            asyncio.create_task(
                self._run_telemetry(reg),
                name=f"hearth-telemetry-{reg.name}",
            )
            for reg in self._telemetry
        ]
        if self._heartbeat_interval is not None:
            tasks.append(
                asyncio.create_task(
                    self._heartbeat_loop(health_reporter, self._heartbeat_interval),
                    name="hearth-heartbeat",
                ),
            )
        try:
            await shutdown_event.wait()
        finally:
            await _cancel_all(tasks)

    async def _run_telemetry(self, reg: _TelemetryRegistration) -> None:
        producer = self.producer(
            reg.name,
            kind=reg.kind,
            label_names=reg.label_names,
            category=reg.category,
        )
        producer.register()
        failing: type[Exception] | None = None
        while True:
            try:
                value = await reg.func()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Log each distinct failure once until the poller recovers.
                if type(exc) is not failing:
                    logger.error("Polling %s failed: %s", reg.name, exc)
                failing = type(exc)
            else:
                if value is not None:
                    producer.emit(value, reg.labels)
                if failing is not None:
                    logger.info("Polling %s recovered", reg.name)
                    failing = None
            await asyncio.sleep(reg.interval)

    async def _publish_heartbeat(self, health_reporter: HealthReporter) -> None:
        if self._appliance is not None and self._appliance_name is not None:
            health_reporter.set_device_status(
                self._appliance_name,
                str(self._appliance.link_state),
            )
        await health_reporter.publish_heartbeat()

    async def _heartbeat_loop(
        self,
        health_reporter: HealthReporter,
        interval: float,
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._publish_heartbeat(health_reporter)


def _shutdown_trigger(event: asyncio.Event | None) -> asyncio.Event:
    """*event*, or a fresh one set by SIGTERM or SIGINT."""
    if event is not None:
        return event
    event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, event.set)
    return event


async def _exit_lifespan(
    lifespan: AbstractAsyncContextManager[None],
    exc_info: tuple[Any, Any, Any],
) -> None:
    try:
        await lifespan.__aexit__(*exc_info)
    except Exception:
        logger.exception("Lifespan exit failed; continuing shutdown")


async def _cancel_all(tasks: list[asyncio.Task[None]]) -> None:
    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results, strict=True):
        if isinstance(result, Exception):
            logger.error("%s ended with %r", task.get_name(), result)
