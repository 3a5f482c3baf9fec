"""Producer helper for telemetry adapters.

Every adapter (sensor, cloud API poller, switch, the appliance) follows
the same contract: publish one :class:`RegistrationEvent` under a fresh
identity, then zero or more :class:`ReadingEvent` objects under that
identity.  :class:`Producer` packages that contract so adapters only
deal with values.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from hearth._bus import EventBus, MetricKind, ReadingEvent, RegistrationEvent, Step

logger = logging.getLogger(__name__)


class Producer:
    """Identity-carrying publisher of one metric's registration and readings.

    The identity is generated once per instance and stays stable for its
    lifetime.  :meth:`emit` registers automatically on first use, so an
    adapter that never calls :meth:`register` still honours the contract.

    Args:
        bus: Running event bus to publish on.
        name: Metric name to register.
        kind: Gauge or counter.
        label_names: Label names every reading must supply values for.
        category: Default category attached to readings (e.g.
            ``"temperature"`` or ``"switch"``), used by the webhook
            forwarder to shape notifications.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        name: str,
        kind: MetricKind = MetricKind.GAUGE,
        label_names: Sequence[str] = (),
        category: str | None = None,
    ) -> None:
        self._bus = bus
        self._identity = uuid.uuid4()
        self._name = name
        self._kind = kind
        self._label_names = tuple(label_names)
        self._category = category
        self._registered = False

    @property
    def identity(self) -> uuid.UUID:
        return self._identity

    @property
    def name(self) -> str:
        return self._name

    @property
    def registered(self) -> bool:
        return self._registered

    def register(self) -> None:
        """Publish the registration event.

        Calling it again re-publishes the same definition, which
        consumers treat as an overwrite.
        """
        self._bus.publish(
            RegistrationEvent(
                identity=self._identity,
                kind=self._kind,
                name=self._name,
                label_names=self._label_names,
            ),
        )
        self._registered = True
        logger.debug(
            "Registered %s %s (identity=%s)",
            self._kind,
            self._name,
            self._identity,
            extra={"identity": str(self._identity)},
        )

    def emit(
        self,
        value: float | Step,
        labels: Sequence[str] = (),
        *,
        category: str | None = None,
    ) -> None:
        """Publish one reading, registering first if needed."""
        if not self._registered:
            self.register()
        self._bus.publish(
            ReadingEvent(
                identity=self._identity,
                value=value if isinstance(value, Step) else float(value),
                labels=tuple(labels),
                category=category if category is not None else self._category,
            ),
        )

    def increment(self, labels: Sequence[str] = ()) -> None:
        self.emit(Step.INCREMENT, labels)

    def decrement(self, labels: Sequence[str] = ()) -> None:
        self.emit(Step.DECREMENT, labels)
