"""Error reports published on MQTT.

Only command-path failures are reported this way: the command ingress
catches what :meth:`hearth.Hub.command` raises, logs it and hands it to
:class:`ErrorPublisher`.  Telemetry-path failures stay in the log.

::

    {prefix}/error            every report
    {prefix}/{device}/error   reports naming a device

Report body::

    {"error_type": "property_not_found",
     "message": "Property heater has not been reported by the appliance",
     "device": "heaterfan",
     "timestamp": "2026-02-14T12:34:56+00:00",
     "details": {"property": "heater"}}

Reports are QoS 1 and not retained.  A report that cannot be written is
logged and dropped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from hearth._mqtt import MqttPort
from hearth.exceptions import (
    NotConnectedError,
    ParseError,
    PropertyNotFoundError,
    StartupError,
    TransportError,
    UnknownIdentityError,
)

logger = logging.getLogger(__name__)

DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    StartupError: "startup",
    UnknownIdentityError: "unknown_identity",
    PropertyNotFoundError: "property_not_found",
    ParseError: "invalid_command",
    NotConnectedError: "not_connected",
    TransportError: "transport",
}
"""Exact exception class to ``error_type``; anything else is ``"error"``."""


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


def error_details(error: Exception) -> dict[str, object]:
    """Machine-readable context carried by hearth exceptions."""
    details: dict[str, object] = {}
    property_name = getattr(error, "property_name", "")
    if property_name:
        details["property"] = property_name
    topic = getattr(error, "topic", "")
    if topic:
        details["topic"] = topic
    return details


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Describe *error* as a report.

    The type lookup uses the exact class, so subclasses of mapped
    exceptions report as ``"error"``.  *details* defaults to
    :func:`error_details`.
    """
    types = DEFAULT_ERROR_TYPES if error_type_map is None else error_type_map
    when = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=types.get(type(error), "error"),
        message=str(error),
        device=device,
        timestamp=when.isoformat(),
        details=error_details(error) if details is None else details,
    )


@dataclass
class ErrorPublisher:
    """Writes error reports under *topic_prefix*.

    *clock* returns the report timestamp; UTC now by default.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    def topics_for(self, device: str | None) -> list[str]:
        topics = [f"{self.topic_prefix}/error"]
        if device is not None:
            topics.append(f"{self.topic_prefix}/{device}/error")
        return topics

    async def publish(self, error: Exception, *, device: str | None = None) -> None:
        """Report *error* on the global topic and, with *device*, the device topic."""
        report = build_error_payload(
            error,
            error_type_map=self.error_type_map,
            device=device,
            clock=self.clock,
        )
        body = report.to_json()
        logger.warning(
            "Reporting %s error: %s",
            report.error_type,
            report.message,
            extra={"device": device},
        )
        for topic in self.topics_for(device):
            try:
                await self.mqtt.publish(topic, body, retain=False, qos=1)
            except Exception:
                logger.exception("Could not publish error report to %s", topic)
