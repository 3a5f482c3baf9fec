"""Heater/fan appliance MQTT protocol model.

The appliance publishes one JSON value per property under::

    {namespace}/{device_id}/state/{suffix}

and accepts writes on the same topic with ``/set`` appended.  The suffix
set is closed; every suffix maps to one :class:`Property` and one strict
decoder.  Decoding is strict: a JSON string ``"true"`` is not a bool and
a float is not an int.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from hearth.exceptions import ParseError

DEFAULT_NAMESPACE = "appliance/heaterfan"

# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class Property(enum.StrEnum):
    """Closed set of appliance properties, valued by topic suffix."""

    POWER_ON = "power_on"
    MODE = "mode"
    TARGET_TEMPERATURE = "target_temperature"
    CURRENT_TEMPERATURE = "current_temperature"
    FAN_SPEED = "fan_speed"
    OSCILLATE = "oscillate"
    TIMER = "timer"
    SILENT = "silent"
    HEATER = "heater"
    VENT_HEAT = "vent_heat"
    HEAT_STATUS = "heat_status"
    ERROR = "error"


class FanMode(enum.StrEnum):
    NORMAL = "normal"
    NATURAL = "natural"
    SLEEP = "sleep"


class HeatStatus(enum.StrEnum):
    IDLE = "idle"
    ACTIVE = "active"


class ThermostatState(enum.IntEnum):
    """Thermostat target/current state as exchanged with the webhook bridge."""

    OFF = 0
    HEATING = 1
    COOLING = 2


Value = bool | int | FanMode | HeatStatus


@dataclass(frozen=True, slots=True)
class PropertyValue:
    """A decoded property reading."""

    property: Property
    value: Value


@dataclass(frozen=True, slots=True)
class RawMessage:
    """An inbound MQTT message exactly as received."""

    topic: str
    payload: bytes


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


def _bool(raw: Any) -> bool:
    if not isinstance(raw, bool):
        msg = f"expected a JSON boolean, got {raw!r}"
        raise ValueError(msg)
    return raw


def _uint(maximum: int) -> Callable[[Any], int]:
    def decode(raw: Any) -> int:
        if isinstance(raw, bool) or not isinstance(raw, int):
            msg = f"expected a JSON integer, got {raw!r}"
            raise ValueError(msg)
        if not 0 <= raw <= maximum:
            msg = f"{raw} is outside 0..{maximum}"
            raise ValueError(msg)
        return raw

    return decode


def _member[E: enum.StrEnum](enum_type: type[E]) -> Callable[[Any], E]:
    def decode(raw: Any) -> E:
        if not isinstance(raw, str):
            msg = f"expected a JSON string, got {raw!r}"
            raise ValueError(msg)
        return enum_type(raw)

    return decode


_U8 = _uint(0xFF)

DECODERS: Mapping[Property, Callable[[Any], Value]] = {
    Property.POWER_ON: _bool,
    Property.MODE: _member(FanMode),
    Property.TARGET_TEMPERATURE: _U8,
    Property.CURRENT_TEMPERATURE: _U8,
    Property.FAN_SPEED: _U8,
    Property.OSCILLATE: _bool,
    Property.TIMER: _uint(0xFFFF),
    Property.SILENT: _bool,
    Property.HEATER: _bool,
    Property.VENT_HEAT: _bool,
    Property.HEAT_STATUS: _member(HeatStatus),
    Property.ERROR: _U8,
}


def decode_payload(prop: Property, payload: bytes, *, topic: str = "") -> PropertyValue:
    """Decode a raw JSON payload for *prop*.

    Raises:
        ParseError: If the payload is not valid JSON of the expected type.
    """
    try:
        raw = json.loads(payload)
        value = DECODERS[prop](raw)
    except (ValueError, UnicodeDecodeError) as exc:
        msg = f"Cannot decode {prop} payload {payload!r}: {exc}"
        raise ParseError(msg, topic=topic) from exc
    return PropertyValue(prop, value)


def encode_value(value: Value) -> str:
    """JSON-encode a property value for a ``/set`` write."""
    if isinstance(value, enum.StrEnum):
        return json.dumps(value.value)
    return json.dumps(value)


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ApplianceTopics:
    """Topic layout of one appliance.

    The canonical key of a property is its full state topic.
    """

    device_id: str
    namespace: str = DEFAULT_NAMESPACE

    @property
    def state_prefix(self) -> str:
        return f"{self.namespace}/{self.device_id}/state/"

    def key(self, prop: Property) -> str:
        """Canonical key (state topic) of *prop*."""
        return f"{self.state_prefix}{prop}"

    def set_topic(self, prop: Property) -> str:
        return f"{self.key(prop)}/set"

    def keys(self) -> tuple[str, ...]:
        """Canonical keys of every property, in table order."""
        return tuple(self.key(prop) for prop in Property)

    def owns(self, topic: str) -> bool:
        return topic.startswith(self.state_prefix)

    def resolve(self, topic: str) -> Property:
        """Map an inbound state topic to its property.

        Raises:
            ParseError: If the topic is outside this appliance's state
                namespace or its suffix is unknown.
        """
        if not self.owns(topic):
            msg = f"Topic {topic} is not a state topic of {self.device_id}"
            raise ParseError(msg, topic=topic)
        suffix = topic[len(self.state_prefix) :]
        try:
            return Property(suffix)
        except ValueError:
            msg = f"Unknown property suffix {suffix!r}"
            raise ParseError(msg, topic=topic) from None

    def decode(self, message: RawMessage) -> PropertyValue:
        """Resolve and decode *message* in one step."""
        prop = self.resolve(message.topic)
        return decode_payload(prop, message.payload, topic=message.topic)


# ---------------------------------------------------------------------------
# Derived telemetry
# ---------------------------------------------------------------------------

TELEMETRY: Mapping[Property, tuple[str, str]] = {
    Property.POWER_ON: ("power_on", "onoff"),
    Property.CURRENT_TEMPERATURE: ("temperature", "celsius"),
    Property.FAN_SPEED: ("fan_speed", "steps"),
    Property.OSCILLATE: ("oscillate", "onoff"),
}
"""Property → ``(kind, unit)`` labels of the readings derived from it."""


def telemetry_readings(
    state: Mapping[Property, Value],
) -> list[tuple[float, tuple[str, str]]]:
    """Derive ``(value, (kind, unit))`` readings from a state snapshot.

    Booleans become ``1.0``/``0.0``; properties absent from *state* are
    skipped.
    """
    readings = []
    for prop, labels in TELEMETRY.items():
        if prop in state:
            readings.append((float(state[prop]), labels))
    return readings


def current_thermostat_state(state: Mapping[Property, Value]) -> ThermostatState:
    """Off when powered off; heating when actively heating, else cooling."""
    if not state.get(Property.POWER_ON, False):
        return ThermostatState.OFF
    heating = (
        state.get(Property.HEAT_STATUS) == HeatStatus.ACTIVE
        or state.get(Property.VENT_HEAT, False) is True
    )
    return ThermostatState.HEATING if heating else ThermostatState.COOLING


def state_queries(
    device_id: str,
    state: Mapping[Property, Value],
) -> list[dict[str, str | int]]:
    """Build the full-state webhook queries for both bridge accessories.

    The thermostat accessory is ``t-{device_id}``; the fan accessory is
    ``{device_id}``.  Missing properties fall back to: power off, fan
    speed 1, oscillate off, temperatures 1.
    """
    thermostat = f"t-{device_id}"
    power = bool(state.get(Property.POWER_ON, False))
    return [
        {
            "accessoryId": thermostat,
            "currentTemperature": int(state.get(Property.CURRENT_TEMPERATURE, 1)),
        },
        {
            "accessoryId": thermostat,
            "targetTemperature": int(state.get(Property.TARGET_TEMPERATURE, 1)),
        },
        {
            "accessoryId": thermostat,
            "currentState": int(current_thermostat_state(state)),
        },
        {"accessoryId": device_id, "speed": int(state.get(Property.FAN_SPEED, 1))},
        {"accessoryId": device_id, "state": int(power)},
        {
            "accessoryId": device_id,
            "swingMode": int(bool(state.get(Property.OSCILLATE, False))),
        },
    ]
