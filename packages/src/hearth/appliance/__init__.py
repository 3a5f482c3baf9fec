"""Heater/fan appliance synchronisation and control."""

from hearth.appliance._commands import (
    VARIANTS,
    CommandRequest,
    CommandRouter,
    FanSpeed,
    Heater,
    Mode,
    Oscillate,
    PowerOn,
    ProtocolWrite,
    Silent,
    TargetTemperature,
    Timer,
    VentHeat,
    parse_command,
)
from hearth.appliance._protocol import (
    ApplianceTopics,
    FanMode,
    HeatStatus,
    Property,
    PropertyValue,
    RawMessage,
    ThermostatState,
    state_queries,
    telemetry_readings,
)
from hearth.appliance._store import DeviceStateStore, ReadWriteLock
from hearth.appliance._sync import ApplianceSync, LinkState, StatePushTarget

__all__ = [
    "VARIANTS",
    "ApplianceSync",
    "ApplianceTopics",
    "CommandRequest",
    "CommandRouter",
    "DeviceStateStore",
    "FanMode",
    "FanSpeed",
    "HeatStatus",
    "Heater",
    "LinkState",
    "Mode",
    "Oscillate",
    "PowerOn",
    "Property",
    "PropertyValue",
    "ProtocolWrite",
    "RawMessage",
    "ReadWriteLock",
    "Silent",
    "StatePushTarget",
    "TargetTemperature",
    "ThermostatState",
    "Timer",
    "VentHeat",
    "parse_command",
    "state_queries",
    "telemetry_readings",
]
