"""Tests for hearth.appliance._commands — parsing and write sequencing.

Test Techniques Used:
    - Equivalence Partitioning: valid and invalid wire-form commands
    - Boundary Value Analysis: value ranges of the integer variants
    - Decision Table: thermostat target × cached power state
    - Mock-based Isolation: MockMqttClient records and fails writes
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from pydantic import ValidationError

from hearth._bus import EventBus
from hearth.appliance import (
    ApplianceSync,
    CommandRouter,
    FanMode,
    FanSpeed,
    Heater,
    Mode,
    Oscillate,
    PowerOn,
    Property,
    ProtocolWrite,
    RawMessage,
    TargetTemperature,
    ThermostatState,
    Timer,
    VentHeat,
    parse_command,
)
from hearth.exceptions import (
    NotConnectedError,
    ParseError,
    PropertyNotFoundError,
    TransportError,
)
from hearth.testing import MockMqttClient

DEVICE = "5ccf7faabbcc"
PREFIX = f"appliance/heaterfan/{DEVICE}/state"


@pytest.fixture
async def sync(
    mock_mqtt: MockMqttClient,
    event_bus: EventBus,
) -> AsyncIterator[ApplianceSync]:
    component = ApplianceSync(mqtt=mock_mqtt, bus=event_bus, device_id=DEVICE)
    await component.start()
    yield component
    await component.stop()


@pytest.fixture
def router(sync: ApplianceSync, mock_mqtt: MockMqttClient) -> CommandRouter:
    mock_mqtt.reset()
    return CommandRouter(sync, mock_mqtt)


async def _seed(sync: ApplianceSync, **values: bytes) -> None:
    for suffix, payload in values.items():
        await sync.process(
            RawMessage(topic=sync.topics.key(Property(suffix)), payload=payload),
        )


def _writes(mqtt: MockMqttClient) -> list[tuple[str, str]]:
    return [(topic, payload) for topic, payload, _retain, _qos in mqtt.published]


# ---------------------------------------------------------------------------
# parse_command
# ---------------------------------------------------------------------------


class TestParseCommand:
    """Technique: Equivalence Partitioning — wire form."""

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ('{"PowerOn": true}', PowerOn(value=True)),
            ('{"Mode": "natural"}', Mode(value=FanMode.NATURAL)),
            ('{"TargetTemperature": 24}', TargetTemperature(value=24)),
            ('{"FanSpeed": 10}', FanSpeed(value=10)),
            ('{"Oscillate": true}', Oscillate(value=True)),
            ('{"Oscillate": 0}', Oscillate(value=False)),
            ('{"Timer": 65535}', Timer(value=65535)),
            ('{"Heater": 1}', Heater(value=ThermostatState.HEATING)),
            (b'{"VentHeat": false}', VentHeat(value=False)),
        ],
    )
    async def test_valid(self, payload: str | bytes, expected: object) -> None:
        assert parse_command(payload) == expected

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "[]",
            "{}",
            '{"PowerOn": true, "Silent": true}',
            '{"Turbo": true}',
            '{"PowerOn": 1}',
            '{"PowerOn": "true"}',
            '{"Mode": "turbo"}',
            '{"FanSpeed": 0}',
            '{"FanSpeed": 11}',
            '{"TargetTemperature": 256}',
            '{"Timer": -1}',
            '{"Oscillate": 2}',
            '{"Heater": 3}',
        ],
    )
    async def test_invalid(self, payload: str) -> None:
        with pytest.raises(ParseError):
            parse_command(payload)

    async def test_requests_are_frozen(self) -> None:
        request = PowerOn(value=True)
        with pytest.raises(ValidationError):
            request.value = False  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Simple commands
# ---------------------------------------------------------------------------


class TestSimpleCommands:
    """Technique: Mock-based Isolation — one write per command."""

    async def test_write_issued_when_property_known(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, mode=b'"normal"')
        mock_mqtt.reset()

        writes = await router.execute(Mode(value=FanMode.SLEEP))

        assert writes == [ProtocolWrite(f"{PREFIX}/mode/set", '"sleep"')]
        assert mock_mqtt.published == [(f"{PREFIX}/mode/set", '"sleep"', False, 1)]

    async def test_unknown_property_raises_without_writes(
        self,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        with pytest.raises(LookupError) as exc_info:
            await router.execute(FanSpeed(value=3))
        assert isinstance(exc_info.value, PropertyNotFoundError)
        assert exc_info.value.property_name == "fan_speed"
        assert mock_mqtt.published == []

    async def test_disconnected_link_raises(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
    ) -> None:
        await sync.stop()
        with pytest.raises(NotConnectedError):
            await router.execute(PowerOn(value=True))


# ---------------------------------------------------------------------------
# Thermostat
# ---------------------------------------------------------------------------


class TestThermostat:
    """Technique: Decision Table — target × cached power."""

    async def test_heating_when_off_powers_on_first(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, heater=b"false", power_on=b"false")
        mock_mqtt.reset()

        await router.execute(Heater(value=ThermostatState.HEATING))

        assert _writes(mock_mqtt) == [
            (f"{PREFIX}/power_on/set", "true"),
            (f"{PREFIX}/heater/set", "true"),
        ]

    async def test_heating_when_power_unknown_powers_on_first(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, heater=b"false")
        mock_mqtt.reset()

        writes = await router.execute(Heater(value=ThermostatState.HEATING))

        assert [w.topic for w in writes] == [
            f"{PREFIX}/power_on/set",
            f"{PREFIX}/heater/set",
        ]

    async def test_cooling_when_on_only_clears_heater(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, heater=b"true", power_on=b"true")
        mock_mqtt.reset()

        await router.execute(Heater(value=ThermostatState.COOLING))

        assert _writes(mock_mqtt) == [(f"{PREFIX}/heater/set", "false")]

    async def test_off_powers_down_only(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, heater=b"true", power_on=b"true")
        mock_mqtt.reset()

        await router.execute(Heater(value=ThermostatState.OFF))

        assert _writes(mock_mqtt) == [(f"{PREFIX}/power_on/set", "false")]

    async def test_off_on_empty_store_writes_nothing(
        self,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        with pytest.raises(PropertyNotFoundError, match="heater"):
            await router.execute(Heater(value=ThermostatState.OFF))
        assert mock_mqtt.published == []

    async def test_heating_without_heater_key_writes_nothing(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, power_on=b"false")
        mock_mqtt.reset()

        with pytest.raises(PropertyNotFoundError):
            await router.execute(Heater(value=ThermostatState.HEATING))
        assert mock_mqtt.published == []

    async def test_failed_write_aborts_sequence(
        self,
        sync: ApplianceSync,
        router: CommandRouter,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await _seed(sync, heater=b"false", power_on=b"false")
        mock_mqtt.reset()
        mock_mqtt.fail_topics.add(f"{PREFIX}/power_on/set")

        with pytest.raises(TransportError):
            await router.execute(Heater(value=ThermostatState.HEATING))
        assert mock_mqtt.published == []
