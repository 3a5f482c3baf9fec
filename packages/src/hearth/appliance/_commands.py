"""Command requests and the command router.

A command request is one of nine variants.  On the wire it is a JSON
object with exactly one key naming the variant::

    {"PowerOn": true}
    {"Mode": "natural"}
    {"Heater": 1}

:func:`parse_command` validates the wire form into a request model and
:class:`CommandRouter` turns a request into ordered MQTT writes against
the appliance, consulting the device state store first.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    ValidationError,
)

from hearth._mqtt import MqttPort
from hearth.appliance._protocol import (
    FanMode,
    Property,
    ThermostatState,
    Value,
    encode_value,
)
from hearth.appliance._sync import ApplianceSync, LinkState
from hearth.exceptions import NotConnectedError, ParseError, PropertyNotFoundError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _bool_from_int(raw: Any) -> Any:
    if not isinstance(raw, bool) and isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    return raw


class CommandRequest(BaseModel):
    """Base of all command variants; ``value`` is the requested setting."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    property: ClassVar[Property]
    value: Any


class PowerOn(CommandRequest):
    property: ClassVar[Property] = Property.POWER_ON
    value: StrictBool


class Mode(CommandRequest):
    property: ClassVar[Property] = Property.MODE
    value: FanMode


class TargetTemperature(CommandRequest):
    property: ClassVar[Property] = Property.TARGET_TEMPERATURE
    value: Annotated[StrictInt, Field(ge=0, le=255)]


class FanSpeed(CommandRequest):
    property: ClassVar[Property] = Property.FAN_SPEED
    value: Annotated[StrictInt, Field(ge=1, le=10)]


class Oscillate(CommandRequest):
    """Also accepts ``0``/``1`` for off/on."""

    property: ClassVar[Property] = Property.OSCILLATE
    value: Annotated[StrictBool, BeforeValidator(_bool_from_int)]


class Timer(CommandRequest):
    property: ClassVar[Property] = Property.TIMER
    value: Annotated[StrictInt, Field(ge=0, le=0xFFFF)]


class Silent(CommandRequest):
    property: ClassVar[Property] = Property.SILENT
    value: StrictBool


class Heater(CommandRequest):
    """Thermostat request: ``0`` off, ``1`` heating, ``2`` cooling."""

    property: ClassVar[Property] = Property.HEATER
    value: ThermostatState


class VentHeat(CommandRequest):
    property: ClassVar[Property] = Property.VENT_HEAT
    value: StrictBool


VARIANTS: dict[str, type[CommandRequest]] = {
    cls.__name__: cls
    for cls in (
        PowerOn,
        Mode,
        TargetTemperature,
        FanSpeed,
        Oscillate,
        Timer,
        Silent,
        Heater,
        VentHeat,
    )
}


def parse_command(payload: str | bytes) -> CommandRequest:
    """Decode the JSON wire form of a command request.

    Raises:
        ParseError: If the payload is not a single-key object naming a
            known variant with a valid value.
    """
    try:
        data = json.loads(payload)
    except ValueError as exc:
        msg = f"Command payload is not valid JSON: {exc}"
        raise ParseError(msg) from exc

    if not isinstance(data, dict) or len(data) != 1:
        msg = "Command must be a JSON object with exactly one key"
        raise ParseError(msg)

    ((variant, value),) = data.items()
    model = VARIANTS.get(variant)
    if model is None:
        msg = f"Unknown command {variant!r}; expected one of {sorted(VARIANTS)}"
        raise ParseError(msg)

    try:
        return model(value=value)
    except ValidationError as exc:
        msg = f"Invalid value for {variant}: {exc.errors()[0]['msg']}"
        raise ParseError(msg) from exc


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProtocolWrite:
    """One outbound write issued to the appliance."""

    topic: str
    payload: str
    qos: int = 1


class CommandRouter:
    """Validates commands against the store and sequences their writes.

    Writes are issued one at a time, each awaited before the next.  The
    first failing write aborts the sequence and propagates; writes
    already issued are not rolled back.
    """

    def __init__(self, sync: ApplianceSync, mqtt: MqttPort) -> None:
        self._sync = sync
        self._mqtt = mqtt

    async def execute(self, request: CommandRequest) -> list[ProtocolWrite]:
        """Carry out *request* and return the writes issued.

        Raises:
            NotConnectedError: The appliance link is not up.
            PropertyNotFoundError: The targeted property has not been
                reported by the appliance yet.
            TransportError: A write failed.
        """
        if self._sync.link_state is LinkState.DISCONNECTED:
            msg = f"Appliance {self._sync.device_id} is not connected"
            raise NotConnectedError(msg)

        logger.info(
            "Executing %s=%r",
            type(request).__name__,
            request.value,
            extra={"device": self._sync.device_id},
        )
        if isinstance(request, Heater):
            return await self._thermostat(request.value)

        await self._require(request.property)
        return [await self._write(request.property, request.value)]

    async def _thermostat(self, target: ThermostatState) -> list[ProtocolWrite]:
        await self._require(Property.HEATER)
        if target is ThermostatState.OFF:
            return [await self._write(Property.POWER_ON, False)]

        writes = []
        power = await self._sync.store.get(self._sync.topics.key(Property.POWER_ON))
        if power is None or power.value is not True:
            writes.append(await self._write(Property.POWER_ON, True))
        writes.append(
            await self._write(Property.HEATER, target is ThermostatState.HEATING),
        )
        return writes

    async def _require(self, prop: Property) -> str:
        key = self._sync.topics.key(prop)
        if await self._sync.store.get(key) is None:
            msg = f"Property {prop} has not been reported by the appliance"
            raise PropertyNotFoundError(msg, property_name=str(prop))
        return key

    async def _write(self, prop: Property, value: Value) -> ProtocolWrite:
        write = ProtocolWrite(
            topic=self._sync.topics.set_topic(prop),
            payload=encode_value(value),
        )
        await self._mqtt.publish(write.topic, write.payload, qos=write.qos)
        logger.debug("Wrote %s = %s", write.topic, write.payload)
        return write
