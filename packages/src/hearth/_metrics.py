"""Metric registry: bus consumer backed by prometheus_client.

Registration events create a :class:`~prometheus_client.Gauge` or
:class:`~prometheus_client.Counter` in a private
:class:`~prometheus_client.CollectorRegistry`; reading events update it.
:meth:`MetricRegistry.snapshot` renders the Prometheus text exposition.

Telemetry-path errors never stop the consumer: an unknown identity, a
label mismatch or an invalid definition is logged and the event dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import uuid
from dataclasses import dataclass

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
    start_http_server,
)

from hearth._bus import (
    Event,
    EventBus,
    MetricKind,
    ReadingEvent,
    RegistrationEvent,
    Step,
    Subscription,
)
from hearth.exceptions import UnknownIdentityError

logger = logging.getLogger(__name__)

_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_]")
_DOC = "hearth telemetry metric"


def sanitize_metric_name(name: str) -> str:
    """Map *name* onto the Prometheus metric name alphabet."""
    cleaned = _SANITIZE_RE.sub("_", name)
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


@dataclass(slots=True)
class _Handle:
    kind: MetricKind
    name: str
    label_names: tuple[str, ...]
    collector: Gauge | Counter


class MetricRegistry:
    """Identity-keyed metric handles over a private collector registry.

    Args:
        bus: Event bus to consume registrations and readings from.
        registry: Collector registry to register metrics in; a fresh
            private registry by default.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._bus = bus
        self._registry = registry if registry is not None else CollectorRegistry()
        self._handles: dict[uuid.UUID, _Handle] = {}
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the bus and start the consumer task."""
        self._subscription = self._bus.subscribe(
            RegistrationEvent,
            ReadingEvent,
            name="metrics",
        )
        self._task = asyncio.create_task(self._consume(), name="hearth-metrics")

    async def stop(self) -> None:
        """Unsubscribe and stop the consumer task.  Idempotent."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:  # noqa: S104
        """Expose :meth:`snapshot` over HTTP on *port*."""
        start_http_server(port, addr=addr, registry=self._registry)
        logger.info("Serving metrics on %s:%d", addr, port)

    # -- Queries ------------------------------------------------------------

    def snapshot(self) -> str:
        """Return the Prometheus text exposition of every metric."""
        return generate_latest(self._registry).decode("utf-8")

    def __contains__(self, identity: object) -> bool:
        return identity in self._handles

    # -- Event handling -----------------------------------------------------

    async def _consume(self) -> None:
        assert self._subscription is not None
        async for event in self._subscription:
            try:
                self.handle(event)
            except Exception:
                logger.exception("Metric update failed for %r", event)

    def handle(self, event: Event) -> None:
        """Apply one bus event; failures are logged, never raised."""
        if isinstance(event, RegistrationEvent):
            self._register(event)
            return
        try:
            self._apply(event)
        except UnknownIdentityError:
            logger.error(
                "Dropping reading for unknown identity %s",
                event.identity,
                extra={"identity": str(event.identity)},
            )

    def _register(self, event: RegistrationEvent) -> None:
        name = sanitize_metric_name(event.name)
        for identity, handle in self._handles.items():
            if handle.name == name and identity != event.identity:
                logger.error(
                    "Metric name %s is already registered by identity %s; "
                    "dropping registration from %s",
                    name,
                    identity,
                    event.identity,
                )
                return

        previous = self._handles.pop(event.identity, None)
        if previous is not None:
            self._registry.unregister(previous.collector)
            logger.info("Re-registering metric %s (identity=%s)", name, event.identity)

        collector_type = Gauge if event.kind is MetricKind.GAUGE else Counter
        try:
            collector = collector_type(
                name,
                _DOC,
                labelnames=event.label_names,
                registry=self._registry,
            )
        except ValueError:
            logger.exception("Invalid metric definition %s", name)
            return

        self._handles[event.identity] = _Handle(
            kind=event.kind,
            name=name,
            label_names=event.label_names,
            collector=collector,
        )
        logger.debug("Registered %s %s %s", event.kind, name, event.label_names)

    def _apply(self, event: ReadingEvent) -> None:
        handle = self._handles.get(event.identity)
        if handle is None:
            msg = f"No registration for identity {event.identity}"
            raise UnknownIdentityError(msg)

        if len(event.labels) != len(handle.label_names):
            logger.error(
                "Label mismatch for %s: expected %d values, got %d",
                handle.name,
                len(handle.label_names),
                len(event.labels),
            )
            return

        metric = (
            handle.collector.labels(*event.labels)
            if handle.label_names
            else handle.collector
        )

        if event.value is Step.INCREMENT:
            metric.inc()
        elif handle.kind is MetricKind.COUNTER:
            # Counters are monotonic: no decrement, no arbitrary set.
            logger.debug("Ignoring %s on counter %s", event.value, handle.name)
        elif event.value is Step.DECREMENT:
            metric.dec()  # type: ignore[union-attr]
        else:
            metric.set(event.value)  # type: ignore[union-attr]
